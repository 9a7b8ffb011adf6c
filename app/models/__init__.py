"""Models package - exports all SQLAlchemy models."""
from app.models.estimate import Estimate, EstimateStatus, AdjustmentType, EDITABLE_STATUSES, STATUS_LABELS
from app.models.estimate_item import EstimateItem, ItemType
from app.models.estimate_labor_item import EstimateLaborItem, RateType
from app.models.estimate_activity import EstimateActivity, ActivityAction
from app.models.quote import Quote, QuoteStatus
from app.models.quote_line import QuoteLine

__all__ = [
    'Estimate', 'EstimateStatus', 'AdjustmentType', 'EDITABLE_STATUSES', 'STATUS_LABELS',
    'EstimateItem', 'ItemType',
    'EstimateLaborItem', 'RateType',
    'EstimateActivity', 'ActivityAction',
    'Quote', 'QuoteStatus', 'QuoteLine',
]
