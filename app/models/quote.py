"""Quote model: customer-facing snapshot produced from an approved estimate."""
import enum
from sqlalchemy import Column, BigInteger, String, Numeric, DateTime, Date, Text, ForeignKey, Enum as SQLEnum
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from app.database import Base, BigIntegerId
from app.models.estimate import MONEY


class QuoteStatus(enum.Enum):
    """Quote status enum. Conversion always creates DRAFT quotes."""
    DRAFT = "DRAFT"
    SENT = "SENT"
    ACCEPTED = "ACCEPTED"
    REJECTED = "REJECTED"
    EXPIRED = "EXPIRED"


class Quote(Base):
    """
    Quote.

    Totals and lines are copied from the source estimate at conversion time,
    so later changes to the estimate never alter the quote.
    """

    __tablename__ = 'quote'

    id = Column(BigIntegerId, primary_key=True, autoincrement=True)
    quote_no = Column(String(64), nullable=False, unique=True, index=True)
    estimate_id = Column(BigInteger, ForeignKey('estimate.id'), nullable=False, unique=True)
    service_request_id = Column(String(64), nullable=False)
    status = Column(SQLEnum(QuoteStatus, name='quote_status'), nullable=False, default=QuoteStatus.DRAFT)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    terms = Column(Text, nullable=True)
    valid_until = Column(Date, nullable=False)

    # Snapshot of the estimate's figures
    subtotal = Column(MONEY, nullable=False)
    profit_amount = Column(MONEY, nullable=False)
    discount_amount = Column(MONEY, nullable=False)
    total_before_vat = Column(MONEY, nullable=False)
    vat_rate = Column(Numeric(9, 6), nullable=False)
    vat_amount = Column(MONEY, nullable=False)
    total = Column(MONEY, nullable=False)

    created_by = Column(String(64), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    # Relationships
    estimate = relationship('Estimate', back_populates='quote')
    lines = relationship('QuoteLine', back_populates='quote', cascade='all, delete-orphan', order_by='QuoteLine.sort_order')

    def __repr__(self):
        return f"<Quote(id={self.id}, number='{self.quote_no}', status='{self.status.value}', total={self.total})>"

    @property
    def is_expired(self):
        """Check if quote is expired (calculated, not stored)."""
        from datetime import date
        if self.status in (QuoteStatus.DRAFT, QuoteStatus.SENT) and self.valid_until:
            return date.today() > self.valid_until
        return False

    def to_dict(self):
        return {
            'id': self.id,
            'quote_no': self.quote_no,
            'estimate_id': self.estimate_id,
            'service_request_id': self.service_request_id,
            'status': self.status.value,
            'title': self.title,
            'description': self.description,
            'terms': self.terms,
            'valid_until': self.valid_until.isoformat(),
            'is_expired': self.is_expired,
            'subtotal': str(self.subtotal),
            'profit_amount': str(self.profit_amount),
            'discount_amount': str(self.discount_amount),
            'total_before_vat': str(self.total_before_vat),
            'vat_rate': str(self.vat_rate),
            'vat_amount': str(self.vat_amount),
            'total': str(self.total),
            'created_by': self.created_by,
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'lines': [line.to_dict() for line in self.lines],
        }
