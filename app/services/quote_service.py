"""Quote service: converting approved estimates into customer quotes."""

import logging
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from app.exceptions import InvalidStateError, NotFoundError, ValidationError
from app.models import (
    ActivityAction, Estimate, Quote, QuoteLine, QuoteStatus, RateType
)
from app.services.estimate_service import _clean_text
from app.services.estimate_workflow_service import (
    TransitionResult, WorkflowAction, run_transition
)
from app.utils.number_format import parse_date

logger = logging.getLogger(__name__)

UNIT_PRICE_PLACES = Decimal('0.000001')


def generate_quote_number(session: Session, prefix: str = 'QT') -> str:
    """Generate the next quote number, e.g. QT-2026-0042."""
    year = datetime.now().year
    stem = f"{prefix}-{year}-"
    count = session.query(func.count(Quote.id)).filter(Quote.quote_no.like(f'{stem}%')).scalar() or 0
    return f"{stem}{str(count + 1).zfill(4)}"


def _unit_price(line_total: Decimal, qty: Decimal) -> Decimal:
    if not qty:
        return line_total
    return (line_total / qty).quantize(UNIT_PRICE_PLACES)


def build_quote_lines(estimate: Estimate) -> List[QuoteLine]:
    """
    Snapshot the estimate's lines, materials first, then labor.

    line_total is the marked-up line price. Labor qty is worker-hours or
    worker-days.
    """
    lines = []
    for item in estimate.items:
        lines.append(QuoteLine(
            sort_order=len(lines),
            line_kind=item.item_type.value,
            description_snapshot=item.name,
            unit_snapshot=item.unit,
            qty=item.quantity,
            unit_price=_unit_price(item.total_price, item.quantity),
            line_total=item.total_price,
        ))
    for item in estimate.labor_items:
        if item.rate_type == RateType.DAILY:
            qty, unit = item.quantity * item.days, 'day'
        else:
            qty, unit = item.quantity * item.hours, 'hr'
        lines.append(QuoteLine(
            sort_order=len(lines),
            line_kind='LABOR',
            description_snapshot=item.description,
            unit_snapshot=unit,
            qty=qty,
            unit_price=_unit_price(item.total_price, qty),
            line_total=item.total_price,
        ))
    return lines


def convert_estimate_to_quote(
    session: Session,
    estimate_id: int,
    actor_id: str,
    valid_until=None,
    title: Optional[str] = None,
    description: Optional[str] = None,
    terms: Optional[str] = None,
    number_prefix: str = 'QT',
    valid_days: int = 30,
) -> TransitionResult:
    """
    Turn an APPROVED estimate into a DRAFT quote.

    The quote copies the estimate's totals and lines as they are now; the
    estimate becomes CONVERTED and can no longer change.

    Args:
        valid_until: Date (or ISO string) the quote expires; defaults to
            today + valid_days. Must not be in the past.

    Returns:
        TransitionResult with the created quote in .quote

    Raises:
        ValidationError: valid_until in the past or malformed
        InvalidStateError: estimate not APPROVED, not latest, or already converted
        NotFoundError: estimate does not exist
    """
    expires = parse_date(valid_until, 'valid_until')
    if expires is None:
        expires = date.today() + timedelta(days=valid_days)
    if expires < date.today():
        raise ValidationError('valid_until cannot be in the past', field='valid_until')

    title = _clean_text(title, 'title', max_length=255)
    description = _clean_text(description, 'description')
    terms = _clean_text(terms, 'terms')
    quote_no = generate_quote_number(session, number_prefix)

    def apply(estimate, now):
        if estimate.quote is not None:
            raise InvalidStateError(
                estimate.status, WorkflowAction.CONVERT_TO_QUOTE.value,
                f'Estimate {estimate.estimate_no} was already converted to quote {estimate.quote.quote_no}'
            )
        quote = Quote(
            quote_no=quote_no,
            estimate=estimate,
            service_request_id=estimate.service_request_id,
            status=QuoteStatus.DRAFT,
            title=title or estimate.title,
            description=description if description is not None else estimate.description,
            terms=terms,
            valid_until=expires,
            subtotal=estimate.subtotal,
            profit_amount=estimate.profit_amount,
            discount_amount=estimate.discount_amount,
            total_before_vat=estimate.total_before_vat,
            vat_rate=estimate.vat_rate,
            vat_amount=estimate.vat_amount,
            total=estimate.total,
            created_by=actor_id,
            lines=build_quote_lines(estimate),
        )
        session.add(quote)
        return quote

    result = run_transition(
        session, estimate_id, WorkflowAction.CONVERT_TO_QUOTE, actor_id,
        ActivityAction.CONVERTED, f'Converted to quote {quote_no}', apply
    )
    logger.info(f"Quote {quote_no} created from estimate {result.estimate.estimate_no}: total {result.quote.total}")
    return result


def get_quote(session: Session, quote_id: int) -> Quote:
    quote = session.query(Quote).filter(Quote.id == quote_id).first()
    if not quote:
        raise NotFoundError(f'Quote {quote_id} not found')
    return quote
