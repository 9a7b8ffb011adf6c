"""QuoteLine model for quote line items."""
from sqlalchemy import Column, BigInteger, Integer, String, Numeric, ForeignKey
from sqlalchemy.orm import relationship
from app.database import Base, BigIntegerId
from app.models.estimate import MONEY


class QuoteLine(Base):
    """
    Quote Line.

    Stores a snapshot of an estimate line at conversion time to preserve
    pricing and wording even if the estimate changes later.
    """

    __tablename__ = 'quote_line'

    id = Column(BigIntegerId, primary_key=True, autoincrement=True)
    quote_id = Column(BigInteger, ForeignKey('quote.id'), nullable=False, index=True)
    sort_order = Column(Integer, nullable=False, default=0)
    line_kind = Column(String(16), nullable=False)  # MATERIAL, EQUIPMENT, SERVICE, OTHER, LABOR
    description_snapshot = Column(String(255), nullable=False)
    unit_snapshot = Column(String(16), nullable=True)
    qty = Column(Numeric(18, 6), nullable=False)
    unit_price = Column(MONEY, nullable=False)
    line_total = Column(MONEY, nullable=False)

    # Relationships
    quote = relationship('Quote', back_populates='lines')

    def __repr__(self):
        return f"<QuoteLine(id={self.id}, quote_id={self.quote_id}, description='{self.description_snapshot}', qty={self.qty}, total={self.line_total})>"

    def to_dict(self):
        return {
            'sort_order': self.sort_order,
            'line_kind': self.line_kind,
            'description': self.description_snapshot,
            'unit': self.unit_snapshot,
            'qty': str(self.qty),
            'unit_price': str(self.unit_price),
            'line_total': str(self.line_total),
        }
