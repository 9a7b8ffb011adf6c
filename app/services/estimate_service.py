"""Estimate service: creating, editing and reading versioned estimates."""

import logging
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import func, or_
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from app.exceptions import (
    ValidationError, InvalidStateError, NotFoundError, ConcurrentModificationError
)
from app.models import (
    Estimate, EstimateItem, EstimateLaborItem, EstimateStatus, ActivityAction
)
from app.services.activity_service import log_activity
from app.services.pricing_service import (
    DiscountSolution, EstimateTotals, apply_totals, calculate_totals,
    ensure_lines, normalize_commercial_params, normalize_labor_line, normalize_material_line,
    solve_discount_for_target, STORED_PLACES,
)
from app.utils.formatters import round_money
from app.utils.number_format import parse_date

logger = logging.getLogger(__name__)

DETAIL_FIELDS = (
    'description', 'scope', 'estimated_duration', 'internal_notes',
    'assumptions', 'exclusions', 'site_visit_id', 'discount_reason',
)
DATE_FIELDS = ('estimated_start_date', 'estimated_end_date')
COMMERCIAL_FIELDS = (
    'transport_cost', 'profit_margin_type', 'profit_margin_value',
    'vat_rate', 'discount_type', 'discount_value',
)


# ---------------------------------------------------------------------------
# Input building
# ---------------------------------------------------------------------------

def _clean_text(value, field: str, required: bool = False, max_length: int = None) -> Optional[str]:
    text = value.strip() if isinstance(value, str) else (str(value) if value is not None else '')
    if not text:
        if required:
            raise ValidationError(f'{field} is required', field=field)
        return None
    if max_length and len(text) > max_length:
        raise ValidationError(f'{field} must be at most {max_length} characters', field=field)
    return text


def build_items(raw_items: List[Dict[str, Any]]) -> List[EstimateItem]:
    """Validate material lines and build unsaved EstimateItem rows in input order."""
    items = []
    for index, raw in enumerate(ensure_lines(raw_items, 'items')):
        pricing = normalize_material_line(raw)
        items.append(EstimateItem(
            sort_order=index,
            name=_clean_text(raw.get('name'), 'name', required=True, max_length=255),
            description=_clean_text(raw.get('description'), 'description'),
            sku=_clean_text(raw.get('sku'), 'sku', max_length=100),
            inventory_item_id=_clean_text(raw.get('inventory_item_id'), 'inventory_item_id', max_length=64),
            unit=_clean_text(raw.get('unit'), 'unit', max_length=16) or 'pcs',
            notes=_clean_text(raw.get('notes'), 'notes'),
            **pricing
        ))
    return items


def build_labor_items(raw_items: List[Dict[str, Any]]) -> List[EstimateLaborItem]:
    """Validate labor lines and build unsaved EstimateLaborItem rows in input order."""
    items = []
    for index, raw in enumerate(ensure_lines(raw_items, 'labor_items')):
        pricing = normalize_labor_line(raw)
        items.append(EstimateLaborItem(
            sort_order=index,
            description=_clean_text(raw.get('description'), 'description', required=True, max_length=255),
            labor_rate_type_id=_clean_text(raw.get('labor_rate_type_id'), 'labor_rate_type_id', max_length=64),
            notes=_clean_text(raw.get('notes'), 'notes'),
            **pricing
        ))
    return items


def _parse_details(data: Dict[str, Any]) -> Dict[str, Any]:
    """Pick and clean the descriptive fields present in data."""
    details = {}
    for field in DETAIL_FIELDS:
        if field in data:
            details[field] = _clean_text(data[field], field)
    for field in DATE_FIELDS:
        if field in data:
            details[field] = parse_date(data[field], field)
    return details


def _check_dates(start, end):
    if start and end and end < start:
        raise ValidationError('estimated_end_date cannot be before estimated_start_date', field='estimated_end_date')


def _require_billable(items, labor_items):
    if not items and not labor_items:
        raise ValidationError('An estimate needs at least one material or labor line', field='items')


def _commit(session: Session):
    """Commit, translating an optimistic-lock failure into a 409."""
    try:
        session.commit()
    except StaleDataError:
        session.rollback()
        raise ConcurrentModificationError()


def generate_estimate_number(session: Session, prefix: str = 'EST') -> str:
    """Generate the next family number, e.g. EST-2026-0007. Revisions reuse it with a -V<n> suffix."""
    year = datetime.now().year
    stem = f"{prefix}-{year}-"
    count = session.query(func.count(Estimate.id)).filter(
        Estimate.estimate_no.like(f'{stem}%'),
        Estimate.version == 1
    ).scalar() or 0
    return f"{stem}{str(count + 1).zfill(4)}"


def revision_number(base_no: str, version: int) -> str:
    """Number of a later version in the same family: EST-2026-0007-V2."""
    return f"{base_no}-V{version}"


# ---------------------------------------------------------------------------
# Aggregate operations
# ---------------------------------------------------------------------------

def recompute_estimate(estimate: Estimate) -> EstimateTotals:
    """Re-derive every line and estimate total from the stored inputs."""
    return apply_totals(estimate)


def estimate_warnings(estimate: Estimate) -> List[str]:
    """Human-readable, non-fatal warnings about an estimate's figures."""
    warnings = []
    if estimate.total_before_vat is not None and estimate.total_before_vat < 0:
        warnings.append(f'Total before VAT is negative ({estimate.total_before_vat}); check the discount.')
    return warnings


def preview_totals(items, labor_items, params) -> EstimateTotals:
    """Price unsaved lines for the calculate endpoint. Nothing is stored."""
    return calculate_totals(items or [], labor_items or [], params or {})


def preview_discount(items, labor_items, params, target_total) -> DiscountSolution:
    """Suggest the FIXED discount reaching target_total for unsaved lines."""
    return solve_discount_for_target(items or [], labor_items or [], params or {}, target_total)


def create_estimate(
    session: Session,
    service_request_id,
    title: str,
    items: List[Dict[str, Any]],
    labor_items: List[Dict[str, Any]],
    params: Dict[str, Any],
    actor_id: str,
    number_prefix: str = 'EST',
    **details
) -> Estimate:
    """
    Create a DRAFT estimate (version 1, latest) with computed totals.

    Raises:
        ValidationError: missing title/service request, no billable line,
            or any line/commercial value out of range. Nothing is written.
    """
    service_request_id = _clean_text(service_request_id, 'service_request_id', required=True, max_length=64)
    title = _clean_text(title, 'title', required=True, max_length=255)
    actor_id = _clean_text(actor_id, 'actor_id', required=True, max_length=64)

    item_rows = build_items(items)
    labor_rows = build_labor_items(labor_items)
    _require_billable(item_rows, labor_rows)
    commercial = normalize_commercial_params(params or {})
    detail_values = _parse_details(details)
    _check_dates(detail_values.get('estimated_start_date'), detail_values.get('estimated_end_date'))

    try:
        estimate = Estimate(
            estimate_no=generate_estimate_number(session, number_prefix),
            version=1,
            parent_estimate_id=None,
            is_latest_version=True,
            status=EstimateStatus.DRAFT,
            service_request_id=service_request_id,
            title=title,
            created_by=actor_id,
            items=item_rows,
            labor_items=labor_rows,
            **commercial,
            **detail_values
        )
        totals = recompute_estimate(estimate)
        session.add(estimate)
        session.flush()

        log_activity(session, estimate, ActivityAction.CREATED, actor_id, f'Estimate {estimate.estimate_no} created')
        _commit(session)

        logger.info(f"Estimate {estimate.estimate_no} created by {actor_id}: total {totals.total}")
        return estimate
    except Exception:
        session.rollback()
        raise


def _lock_estimate(session: Session, estimate_id: int) -> Estimate:
    estimate = session.query(Estimate).filter(Estimate.id == estimate_id).with_for_update().first()
    if not estimate:
        raise NotFoundError(f'Estimate {estimate_id} not found')
    return estimate


def update_estimate(session: Session, estimate_id: int, actor_id: str, changes: Dict[str, Any]) -> Estimate:
    """
    Edit an estimate while it is DRAFT or REVISION_REQUESTED (latest version only).

    `changes` may hold title, descriptive fields, any commercial parameter,
    and `items` / `labor_items` (each replaces the whole collection, keeping
    the given order). Totals are recomputed before commit.

    Raises:
        NotFoundError, InvalidStateError, ValidationError
    """
    actor_id = _clean_text(actor_id, 'actor_id', required=True, max_length=64)

    try:
        estimate = _lock_estimate(session, estimate_id)

        if not estimate.is_latest_version:
            raise InvalidStateError(
                estimate.status, 'update',
                f'Estimate {estimate.estimate_no} is not the latest version and cannot be edited'
            )
        if not estimate.is_editable:
            raise InvalidStateError(estimate.status, 'update')

        # Validate everything before touching the aggregate
        title = estimate.title
        if 'title' in changes:
            title = _clean_text(changes['title'], 'title', required=True, max_length=255)

        merged_params = estimate.commercial_params()
        merged_params.update({k: changes[k] for k in COMMERCIAL_FIELDS if k in changes})
        commercial = normalize_commercial_params(merged_params)

        item_rows = build_items(changes['items']) if 'items' in changes else None
        labor_rows = build_labor_items(changes['labor_items']) if 'labor_items' in changes else None
        _require_billable(
            item_rows if item_rows is not None else estimate.items,
            labor_rows if labor_rows is not None else estimate.labor_items,
        )

        detail_values = _parse_details(changes)
        _check_dates(
            detail_values.get('estimated_start_date', estimate.estimated_start_date),
            detail_values.get('estimated_end_date', estimate.estimated_end_date),
        )

        # Apply
        estimate.title = title
        for key, value in {**commercial, **detail_values}.items():
            setattr(estimate, key, value)
        if item_rows is not None:
            estimate.items = item_rows
        if labor_rows is not None:
            estimate.labor_items = labor_rows
        estimate.updated_at = datetime.now()

        totals = recompute_estimate(estimate)
        log_activity(session, estimate, ActivityAction.UPDATED, actor_id)
        _commit(session)

        logger.info(f"Estimate {estimate.estimate_no} updated by {actor_id}: total {totals.total}")
        return estimate
    except Exception:
        session.rollback()
        raise


def recompute_stored_totals(session: Session) -> int:
    """
    Recompute totals of every editable latest estimate.

    Returns:
        Number of estimates whose stored figures changed.
    """
    changed = 0
    try:
        estimates = session.query(Estimate).filter(
            Estimate.is_latest_version.is_(True),
            Estimate.status.in_([EstimateStatus.DRAFT, EstimateStatus.REVISION_REQUESTED])
        ).all()
        for estimate in estimates:
            before = {name: getattr(estimate, name) for name in ('subtotal', 'total_before_vat', 'total')}
            recompute_estimate(estimate)
            # apply_totals writes at the stored scale, so equal figures compare equal
            if any(round_money(before[name] or 0, STORED_PLACES) != getattr(estimate, name) for name in before):
                changed += 1
        _commit(session)
        return changed
    except Exception:
        session.rollback()
        raise


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------

def get_estimate(session: Session, estimate_id: int) -> Estimate:
    """Fetch one estimate or raise NotFoundError."""
    estimate = session.query(Estimate).filter(Estimate.id == estimate_id).first()
    if not estimate:
        raise NotFoundError(f'Estimate {estimate_id} not found')
    return estimate


def list_estimates(
    session: Session,
    status: Optional[EstimateStatus] = None,
    search: Optional[str] = None,
    service_request_id: Optional[str] = None,
    latest_only: bool = True,
    page: int = 1,
    per_page: int = 20
) -> Tuple[List[Estimate], int]:
    """
    List estimates, newest first.

    Returns:
        (estimates on the requested page, total matching count)
    """
    query = session.query(Estimate)

    if latest_only:
        query = query.filter(Estimate.is_latest_version.is_(True))
    if status:
        query = query.filter(Estimate.status == status)
    if service_request_id:
        query = query.filter(Estimate.service_request_id == str(service_request_id))
    if search:
        pattern = f'%{search.strip()}%'
        query = query.filter(
            or_(
                Estimate.estimate_no.ilike(pattern),
                Estimate.title.ilike(pattern),
            )
        )

    total = query.count()
    page = max(page, 1)
    estimates = query.order_by(Estimate.created_at.desc(), Estimate.id.desc()) \
        .limit(per_page).offset((page - 1) * per_page).all()
    return estimates, total


def get_estimate_stats(session: Session) -> Dict[str, Any]:
    """Dashboard counters over the latest version of every family."""
    rows = session.query(
        Estimate.status, func.count(Estimate.id), func.coalesce(func.sum(Estimate.total), 0)
    ).filter(
        Estimate.is_latest_version.is_(True)
    ).group_by(Estimate.status).all()

    counts = {status: 0 for status in EstimateStatus}
    values = {status: Decimal('0') for status in EstimateStatus}
    for status, count, value in rows:
        counts[status] = count
        values[status] = Decimal(str(value))

    approved = counts[EstimateStatus.APPROVED] + counts[EstimateStatus.CONVERTED]
    decided = approved + counts[EstimateStatus.REJECTED]
    approval_rate = round(Decimal(approved) * 100 / decided, 1) if decided else Decimal('0')

    return {
        'total_estimates': sum(counts.values()),
        'draft_estimates': counts[EstimateStatus.DRAFT],
        'pending_approval': counts[EstimateStatus.PENDING_MANAGER_APPROVAL],
        'revision_requested': counts[EstimateStatus.REVISION_REQUESTED],
        'approved_estimates': counts[EstimateStatus.APPROVED],
        'rejected_estimates': counts[EstimateStatus.REJECTED],
        'converted_estimates': counts[EstimateStatus.CONVERTED],
        'cancelled_estimates': counts[EstimateStatus.CANCELLED],
        'total_value': sum(
            (v for s, v in values.items() if s != EstimateStatus.CANCELLED), Decimal('0')
        ),
        'approved_value': values[EstimateStatus.APPROVED] + values[EstimateStatus.CONVERTED],
        'approval_rate': approval_rate,
    }


def get_revision_history(session: Session, estimate_id: int) -> List[Estimate]:
    """Every version in the estimate's family, ordered by version."""
    estimate = get_estimate(session, estimate_id)

    root = estimate
    while root.parent_estimate is not None:
        root = root.parent_estimate

    chain = [root]
    current = root
    while current.revisions:
        current = min(current.revisions, key=lambda revision: revision.version)
        chain.append(current)
    return chain
