"""Estimate model: the versioned, priced document that goes through approval."""
import enum
from sqlalchemy import (
    Column, BigInteger, Integer, String, Numeric, DateTime, Date, Text, Boolean,
    ForeignKey, Enum as SQLEnum
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from app.database import Base, BigIntegerId


class EstimateStatus(enum.Enum):
    """Estimate workflow status enum."""
    DRAFT = "DRAFT"
    SUBMITTED = "SUBMITTED"
    PENDING_MANAGER_APPROVAL = "PENDING_MANAGER_APPROVAL"
    REVISION_REQUESTED = "REVISION_REQUESTED"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    CONVERTED = "CONVERTED"
    CANCELLED = "CANCELLED"


class AdjustmentType(enum.Enum):
    """How a markup, profit margin or discount value is applied."""
    NONE = "NONE"
    PERCENTAGE = "PERCENTAGE"
    FIXED = "FIXED"


# Line items and commercial parameters may only change in these statuses
EDITABLE_STATUSES = frozenset({
    EstimateStatus.DRAFT,
    EstimateStatus.REVISION_REQUESTED,
})

STATUS_LABELS = {
    EstimateStatus.DRAFT: 'Draft',
    EstimateStatus.SUBMITTED: 'Submitted',
    EstimateStatus.PENDING_MANAGER_APPROVAL: 'Pending Approval',
    EstimateStatus.REVISION_REQUESTED: 'Revision Requested',
    EstimateStatus.APPROVED: 'Approved',
    EstimateStatus.REJECTED: 'Rejected',
    EstimateStatus.CONVERTED: 'Converted to Quote',
    EstimateStatus.CANCELLED: 'Cancelled',
}


MONEY = Numeric(18, 6)
ADJUSTMENT_TYPE = SQLEnum(AdjustmentType, name='adjustment_type')


class Estimate(Base):
    """
    Estimate (aggregate root).

    Every version of an estimate is its own row. A revision points at the
    version it was spawned from through parent_estimate_id; exactly one row
    per family carries is_latest_version = True.

    Derived financial columns are written only by the pricing recompute and
    never edited directly.
    """

    __tablename__ = 'estimate'

    id = Column(BigIntegerId, primary_key=True, autoincrement=True)
    estimate_no = Column(String(64), nullable=False, unique=True, index=True)
    version = Column(Integer, nullable=False, default=1)
    parent_estimate_id = Column(BigInteger, ForeignKey('estimate.id'), nullable=True, index=True)
    is_latest_version = Column(Boolean, nullable=False, default=True)

    # External references (service request CRUD lives in another system)
    service_request_id = Column(String(64), nullable=False, index=True)
    site_visit_id = Column(String(64), nullable=True)

    # Descriptive
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    scope = Column(Text, nullable=True)
    estimated_duration = Column(String(100), nullable=True)
    estimated_start_date = Column(Date, nullable=True)
    estimated_end_date = Column(Date, nullable=True)
    internal_notes = Column(Text, nullable=True)
    assumptions = Column(Text, nullable=True)
    exclusions = Column(Text, nullable=True)

    # Commercial inputs
    transport_cost = Column(MONEY, nullable=False, default=0)
    profit_margin_type = Column(ADJUSTMENT_TYPE, nullable=False, default=AdjustmentType.NONE)
    profit_margin_value = Column(MONEY, nullable=False, default=0)
    vat_rate = Column(Numeric(9, 6), nullable=False, default=0)
    discount_type = Column(ADJUSTMENT_TYPE, nullable=False, default=AdjustmentType.NONE)
    discount_value = Column(MONEY, nullable=False, default=0)
    discount_reason = Column(Text, nullable=True)

    # Derived financials
    material_cost = Column(MONEY, nullable=False, default=0)
    labor_cost = Column(MONEY, nullable=False, default=0)
    subtotal = Column(MONEY, nullable=False, default=0)
    profit_amount = Column(MONEY, nullable=False, default=0)
    discount_amount = Column(MONEY, nullable=False, default=0)
    total_before_vat = Column(MONEY, nullable=False, default=0)
    vat_amount = Column(MONEY, nullable=False, default=0)
    total = Column(MONEY, nullable=False, default=0)

    # Workflow
    status = Column(SQLEnum(EstimateStatus, name='estimate_status'), nullable=False, default=EstimateStatus.DRAFT, index=True)
    created_by = Column(String(64), nullable=False)
    submitted_at = Column(DateTime(timezone=True), nullable=True)
    submitted_by = Column(String(64), nullable=True)
    approved_at = Column(DateTime(timezone=True), nullable=True)
    approved_by = Column(String(64), nullable=True)
    rejected_at = Column(DateTime(timezone=True), nullable=True)
    rejected_by = Column(String(64), nullable=True)
    rejection_reason = Column(Text, nullable=True)
    revision_requested_at = Column(DateTime(timezone=True), nullable=True)
    revision_requested_by = Column(String(64), nullable=True)
    revision_reason = Column(Text, nullable=True)
    revision_notes = Column(Text, nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_by = Column(String(64), nullable=True)
    cancellation_reason = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    # Optimistic concurrency: every UPDATE checks and bumps this counter
    lock_version = Column(Integer, nullable=False)

    __mapper_args__ = {'version_id_col': lock_version}

    # Relationships
    items = relationship(
        'EstimateItem', back_populates='estimate', cascade='all, delete-orphan',
        order_by='EstimateItem.sort_order'
    )
    labor_items = relationship(
        'EstimateLaborItem', back_populates='estimate', cascade='all, delete-orphan',
        order_by='EstimateLaborItem.sort_order'
    )
    activities = relationship(
        'EstimateActivity', back_populates='estimate', cascade='save-update, merge',
        order_by='EstimateActivity.id'
    )
    parent_estimate = relationship('Estimate', remote_side=[id], backref='revisions')
    quote = relationship('Quote', back_populates='estimate', uselist=False)

    def __repr__(self):
        return f"<Estimate(id={self.id}, no='{self.estimate_no}', v={self.version}, status='{self.status.value}', total={self.total})>"

    @property
    def is_editable(self):
        """Lines and commercial parameters can change only here."""
        return self.is_latest_version and self.status in EDITABLE_STATUSES

    @property
    def is_converted(self):
        return self.quote is not None

    def commercial_params(self):
        """Commercial inputs in the shape the pricing service expects."""
        return {
            'transport_cost': self.transport_cost,
            'profit_margin_type': self.profit_margin_type,
            'profit_margin_value': self.profit_margin_value,
            'vat_rate': self.vat_rate,
            'discount_type': self.discount_type,
            'discount_value': self.discount_value,
        }

    def to_dict(self, include_lines=True):
        """Convert to dictionary for JSON serialization. Decimals become strings."""
        data = {
            'id': self.id,
            'estimate_no': self.estimate_no,
            'version': self.version,
            'parent_estimate_id': self.parent_estimate_id,
            'is_latest_version': self.is_latest_version,
            'service_request_id': self.service_request_id,
            'site_visit_id': self.site_visit_id,
            'title': self.title,
            'description': self.description,
            'scope': self.scope,
            'estimated_duration': self.estimated_duration,
            'estimated_start_date': _iso(self.estimated_start_date),
            'estimated_end_date': _iso(self.estimated_end_date),
            'internal_notes': self.internal_notes,
            'assumptions': self.assumptions,
            'exclusions': self.exclusions,
            'transport_cost': _str(self.transport_cost),
            'profit_margin_type': self.profit_margin_type.value,
            'profit_margin_value': _str(self.profit_margin_value),
            'vat_rate': _str(self.vat_rate),
            'discount_type': self.discount_type.value,
            'discount_value': _str(self.discount_value),
            'discount_reason': self.discount_reason,
            'material_cost': _str(self.material_cost),
            'labor_cost': _str(self.labor_cost),
            'subtotal': _str(self.subtotal),
            'profit_amount': _str(self.profit_amount),
            'discount_amount': _str(self.discount_amount),
            'total_before_vat': _str(self.total_before_vat),
            'vat_amount': _str(self.vat_amount),
            'total': _str(self.total),
            'status': self.status.value,
            'status_label': STATUS_LABELS[self.status],
            'created_by': self.created_by,
            'submitted_at': _iso(self.submitted_at),
            'submitted_by': self.submitted_by,
            'approved_at': _iso(self.approved_at),
            'approved_by': self.approved_by,
            'rejected_at': _iso(self.rejected_at),
            'rejected_by': self.rejected_by,
            'rejection_reason': self.rejection_reason,
            'revision_reason': self.revision_reason,
            'revision_notes': self.revision_notes,
            'cancelled_at': _iso(self.cancelled_at),
            'cancelled_by': self.cancelled_by,
            'cancellation_reason': self.cancellation_reason,
            'created_at': _iso(self.created_at),
            'updated_at': _iso(self.updated_at),
            'converted_to_quote': (
                {'id': self.quote.id, 'quote_no': self.quote.quote_no} if self.quote else None
            ),
        }
        if include_lines:
            data['items'] = [item.to_dict() for item in self.items]
            data['labor_items'] = [item.to_dict() for item in self.labor_items]
        return data


def _str(value):
    return None if value is None else str(value)


def _iso(value):
    return value.isoformat() if value else None
