"""
Pricing service for estimates.

Turns material and labor lines plus commercial parameters into line prices
and estimate totals, and solves the inverse problem of which discount hits a
target grand total.

Everything here is a pure function over Decimal: no database access, no
module state, no rounding between steps. apply_totals rounds to the stored
column scale when writing; presentation rounding lives in app.utils.formatters.

Order of operations:
    line total_cost -> + markup -> total_price
    subtotal = material lines + labor lines + transport
    + profit (on subtotal)
    - discount (on subtotal + profit)
    = total_before_vat
    + VAT (on total_before_vat)
    = total
"""

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, Iterable, Mapping, Optional, Tuple

from app.exceptions import ValidationError, NegativeTotalWarning
from app.models.estimate import AdjustmentType
from app.models.estimate_item import ItemType
from app.models.estimate_labor_item import RateType
from app.utils.formatters import round_money
from app.utils.number_format import parse_decimal, parse_non_negative, parse_int

logger = logging.getLogger(__name__)

ZERO = Decimal('0')
ONE = Decimal('1')
HUNDRED = Decimal('100')

# Decimal places of a solved discount (one unit of the presentation currency)
SOLVER_PLACES = 3

# Scales of the columns that hold line inputs and derived figures
STORED_PLACES = 6
DURATION_PLACES = 3

TOTAL_FIELDS = (
    'material_cost', 'labor_cost', 'subtotal', 'profit_amount',
    'discount_amount', 'total_before_vat', 'vat_amount', 'total',
)


@dataclass(frozen=True)
class LinePrice:
    """Derived figures for one line."""
    total_cost: Decimal
    markup_amount: Decimal
    total_price: Decimal


@dataclass(frozen=True)
class EstimateTotals:
    """All derived figures for an estimate, in full precision."""
    material_cost: Decimal
    labor_cost: Decimal
    transport_cost: Decimal
    subtotal: Decimal
    profit_amount: Decimal
    discount_amount: Decimal
    total_before_vat: Decimal
    vat_amount: Decimal
    total: Decimal
    item_prices: Tuple[LinePrice, ...] = ()
    labor_prices: Tuple[LinePrice, ...] = ()
    warnings: Tuple[NegativeTotalWarning, ...] = ()

    @property
    def is_negative(self) -> bool:
        return self.total_before_vat < 0

    def as_dict(self) -> Dict[str, Decimal]:
        """The derived estimate columns, keyed by column name."""
        return {name: getattr(self, name) for name in TOTAL_FIELDS}


@dataclass(frozen=True)
class DiscountSolution:
    """
    Result of solve_discount_for_target.

    discount_needed is False when the target is not below the natural
    total; discount_type is then NONE and the caller clears its discount.
    """
    discount_type: AdjustmentType
    discount_value: Decimal
    discount_needed: bool
    amount_before_discount: Decimal
    target_total_before_vat: Decimal


# ---------------------------------------------------------------------------
# Input normalisation
# ---------------------------------------------------------------------------

def parse_enum(enum_cls, value, field: str, default=None):
    """
    Coerce an enum member, its value string or a blank to a member.

    Blank and None map to `default`; an unknown value is a ValidationError.
    """
    if isinstance(value, enum_cls):
        return value
    if value is None or (isinstance(value, str) and not value.strip()):
        if default is None:
            raise ValidationError(f'{field} is required', field=field)
        return default
    try:
        return enum_cls(str(value).strip().upper())
    except ValueError:
        allowed = ', '.join(member.value for member in enum_cls)
        raise ValidationError(f'{field} must be one of: {allowed}', field=field)


def _parse_adjustment(data: Mapping[str, Any], type_key: str, value_key: str):
    adjustment_type = parse_enum(AdjustmentType, data.get(type_key), type_key, default=AdjustmentType.NONE)
    value = parse_non_negative(data.get(value_key), value_key, default=0, places=STORED_PLACES)
    return adjustment_type, value


def ensure_lines(lines, field: str) -> list:
    """Check that a line collection is a list of objects; None counts as empty."""
    if lines is None:
        return []
    if not isinstance(lines, (list, tuple)):
        raise ValidationError(f'{field} must be a list', field=field)
    for index, line in enumerate(lines):
        if not isinstance(line, Mapping):
            raise ValidationError(f'{field}[{index}] must be an object', field=field)
    return list(lines)


def normalize_material_line(data: Mapping[str, Any]) -> Dict[str, Any]:
    """Validate the pricing fields of a material line and coerce them to Decimal."""
    quantity = parse_decimal(data.get('quantity'), 'quantity', places=STORED_PLACES)
    if quantity <= 0:
        raise ValidationError('quantity must be greater than 0', field='quantity')

    markup_type, markup_value = _parse_adjustment(data, 'markup_type', 'markup_value')
    return {
        'item_type': parse_enum(ItemType, data.get('item_type'), 'item_type', default=ItemType.MATERIAL),
        'quantity': quantity,
        'unit_cost': parse_non_negative(data.get('unit_cost'), 'unit_cost', places=STORED_PLACES),
        'markup_type': markup_type,
        'markup_value': markup_value,
    }


def normalize_labor_line(data: Mapping[str, Any]) -> Dict[str, Any]:
    """
    Validate the pricing fields of a labor line.

    hours is required for HOURLY lines and days for DAILY lines; the unused
    one is returned as None.
    """
    rate_type = parse_enum(RateType, data.get('rate_type'), 'rate_type', default=RateType.HOURLY)

    quantity = parse_int(data.get('quantity'), 'quantity', default=1)
    if quantity < 1:
        raise ValidationError('quantity (number of workers) must be at least 1', field='quantity')

    hours = days = None
    if rate_type == RateType.HOURLY:
        hours = parse_non_negative(data.get('hours'), 'hours', places=DURATION_PLACES)
    else:
        days = parse_non_negative(data.get('days'), 'days', places=DURATION_PLACES)

    markup_type, markup_value = _parse_adjustment(data, 'markup_type', 'markup_value')
    return {
        'rate_type': rate_type,
        'quantity': quantity,
        'hours': hours,
        'days': days,
        'hourly_rate': parse_non_negative(data.get('hourly_rate'), 'hourly_rate', default=0, places=STORED_PLACES),
        'daily_rate': parse_non_negative(data.get('daily_rate'), 'daily_rate', default=0, places=STORED_PLACES),
        'markup_type': markup_type,
        'markup_value': markup_value,
    }


def normalize_commercial_params(data: Mapping[str, Any]) -> Dict[str, Any]:
    """
    Validate estimate-level commercial parameters.

    vat_rate must be within [0, 100], and so must a PERCENTAGE discount.
    """
    profit_margin_type, profit_margin_value = _parse_adjustment(data, 'profit_margin_type', 'profit_margin_value')
    discount_type, discount_value = _parse_adjustment(data, 'discount_type', 'discount_value')

    vat_rate = parse_non_negative(data.get('vat_rate'), 'vat_rate', default=0, places=STORED_PLACES)
    if vat_rate > HUNDRED:
        raise ValidationError('vat_rate must be between 0 and 100', field='vat_rate')
    if discount_type == AdjustmentType.PERCENTAGE and discount_value > HUNDRED:
        raise ValidationError('A percentage discount must be between 0 and 100', field='discount_value')

    return {
        'transport_cost': parse_non_negative(data.get('transport_cost'), 'transport_cost', default=0, places=STORED_PLACES),
        'profit_margin_type': profit_margin_type,
        'profit_margin_value': profit_margin_value,
        'vat_rate': vat_rate,
        'discount_type': discount_type,
        'discount_value': discount_value,
    }


# ---------------------------------------------------------------------------
# Forward calculation
# ---------------------------------------------------------------------------

def _adjustment_amount(base: Decimal, adjustment_type: AdjustmentType, value: Decimal) -> Decimal:
    """Percentage of base, a fixed amount, or nothing."""
    if value <= 0:
        return ZERO
    if adjustment_type == AdjustmentType.PERCENTAGE:
        return base * value / HUNDRED
    if adjustment_type == AdjustmentType.FIXED:
        return value
    return ZERO


def price_material_line(line: Mapping[str, Any]) -> LinePrice:
    """total_cost = quantity x unit_cost, plus markup."""
    data = normalize_material_line(line)
    total_cost = data['quantity'] * data['unit_cost']
    markup_amount = _adjustment_amount(total_cost, data['markup_type'], data['markup_value'])
    return LinePrice(total_cost, markup_amount, total_cost + markup_amount)


def price_labor_line(line: Mapping[str, Any]) -> LinePrice:
    """total_cost = workers x hours x hourly_rate (HOURLY) or workers x days x daily_rate (DAILY), plus markup."""
    data = normalize_labor_line(line)
    if data['rate_type'] == RateType.DAILY:
        total_cost = data['quantity'] * data['days'] * data['daily_rate']
    else:
        total_cost = data['quantity'] * data['hours'] * data['hourly_rate']
    markup_amount = _adjustment_amount(total_cost, data['markup_type'], data['markup_value'])
    return LinePrice(total_cost, markup_amount, total_cost + markup_amount)


def price_line(line: Mapping[str, Any]) -> LinePrice:
    """Price either kind of line; labor lines are recognised by their rate_type."""
    if line.get('rate_type') is not None:
        return price_labor_line(line)
    return price_material_line(line)


def calculate_totals(
    items: Iterable[Mapping[str, Any]],
    labor_items: Iterable[Mapping[str, Any]],
    params: Mapping[str, Any],
) -> EstimateTotals:
    """
    Compute every derived estimate figure.

    A negative total_before_vat (discount larger than subtotal plus profit)
    is returned as computed and flagged in `warnings`; it is not clamped.
    """
    commercial = normalize_commercial_params(params)

    item_prices = tuple(price_material_line(item) for item in ensure_lines(items, 'items'))
    labor_prices = tuple(price_labor_line(item) for item in ensure_lines(labor_items, 'labor_items'))

    material_cost = sum((p.total_price for p in item_prices), ZERO)
    labor_cost = sum((p.total_price for p in labor_prices), ZERO)
    transport_cost = commercial['transport_cost']
    subtotal = material_cost + labor_cost + transport_cost

    profit_amount = _adjustment_amount(
        subtotal, commercial['profit_margin_type'], commercial['profit_margin_value']
    )
    discount_amount = _adjustment_amount(
        subtotal + profit_amount, commercial['discount_type'], commercial['discount_value']
    )
    total_before_vat = subtotal + profit_amount - discount_amount
    vat_amount = total_before_vat * commercial['vat_rate'] / HUNDRED
    total = total_before_vat + vat_amount

    warnings = ()
    if total_before_vat < 0:
        logger.warning(f"Total before VAT is negative: {total_before_vat} (discount {discount_amount})")
        warnings = (NegativeTotalWarning(total_before_vat),)

    return EstimateTotals(
        material_cost=material_cost,
        labor_cost=labor_cost,
        transport_cost=transport_cost,
        subtotal=subtotal,
        profit_amount=profit_amount,
        discount_amount=discount_amount,
        total_before_vat=total_before_vat,
        vat_amount=vat_amount,
        total=total,
        item_prices=item_prices,
        labor_prices=labor_prices,
        warnings=warnings,
    )


# ---------------------------------------------------------------------------
# Inverse calculation
# ---------------------------------------------------------------------------

def solve_discount_for_target(
    items: Iterable[Mapping[str, Any]],
    labor_items: Iterable[Mapping[str, Any]],
    params: Mapping[str, Any],
    target_total,
) -> DiscountSolution:
    """
    Find the FIXED discount that brings the grand total down to target_total.

    The discount currently set in `params` is ignored. The result is rounded
    to SOLVER_PLACES so that feeding it back through calculate_totals lands
    within one rounding unit of the target. A target at or above the natural
    total yields discount_needed=False with a NONE discount.

    The result is only a suggestion for discount_type/discount_value; the
    stored totals always come from calculate_totals.
    """
    target = parse_decimal(target_total, 'target_total')
    if target <= 0:
        raise ValidationError('target_total must be greater than 0', field='target_total')

    undiscounted = dict(params)
    undiscounted['discount_type'] = AdjustmentType.NONE
    undiscounted['discount_value'] = ZERO
    natural = calculate_totals(items, labor_items, undiscounted)
    vat_rate = normalize_commercial_params(undiscounted)['vat_rate']

    amount_before_discount = natural.subtotal + natural.profit_amount
    target_total_before_vat = target / (ONE + vat_rate / HUNDRED)
    required_discount = amount_before_discount - target_total_before_vat

    if required_discount <= 0:
        return DiscountSolution(
            discount_type=AdjustmentType.NONE,
            discount_value=ZERO,
            discount_needed=False,
            amount_before_discount=amount_before_discount,
            target_total_before_vat=target_total_before_vat,
        )

    return DiscountSolution(
        discount_type=AdjustmentType.FIXED,
        discount_value=round_money(required_discount, SOLVER_PLACES),
        discount_needed=True,
        amount_before_discount=amount_before_discount,
        target_total_before_vat=target_total_before_vat,
    )


def apply_totals(estimate, totals: Optional[EstimateTotals] = None) -> EstimateTotals:
    """
    Recompute and write derived figures onto an estimate and its lines.

    Works on any object exposing items/labor_items with pricing_input() and
    commercial_params(); used by the estimate service after each mutation.
    Figures are written at STORED_PLACES so the session holds exactly what
    the database keeps.
    """
    if totals is None:
        totals = calculate_totals(
            [item.pricing_input() for item in estimate.items],
            [item.pricing_input() for item in estimate.labor_items],
            estimate.commercial_params(),
        )

    lines = list(zip(estimate.items, totals.item_prices)) + list(zip(estimate.labor_items, totals.labor_prices))
    for line, price in lines:
        line.total_cost = round_money(price.total_cost, STORED_PLACES)
        line.markup_amount = round_money(price.markup_amount, STORED_PLACES)
        line.total_price = round_money(price.total_price, STORED_PLACES)
    for name, value in totals.as_dict().items():
        setattr(estimate, name, round_money(value, STORED_PLACES))
    return totals
