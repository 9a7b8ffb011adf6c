"""EstimateLaborItem model for hourly and daily labor lines."""
import enum
from sqlalchemy import Column, BigInteger, Integer, String, Numeric, Text, ForeignKey, Enum as SQLEnum
from sqlalchemy.orm import relationship
from app.database import Base, BigIntegerId
from app.models.estimate import ADJUSTMENT_TYPE, AdjustmentType, MONEY


class RateType(enum.Enum):
    """Labor billing basis."""
    HOURLY = "HOURLY"
    DAILY = "DAILY"


class EstimateLaborItem(Base):
    """
    Estimate Labor Item.

    quantity is the number of workers. hours is only meaningful for HOURLY
    lines and days only for DAILY lines; the other one is stored as NULL.
    """

    __tablename__ = 'estimate_labor_item'

    id = Column(BigIntegerId, primary_key=True, autoincrement=True)
    estimate_id = Column(BigInteger, ForeignKey('estimate.id'), nullable=False, index=True)
    sort_order = Column(Integer, nullable=False, default=0)
    description = Column(String(255), nullable=False)
    rate_type = Column(SQLEnum(RateType, name='labor_rate_type'), nullable=False, default=RateType.HOURLY)
    labor_rate_type_id = Column(String(64), nullable=True)
    quantity = Column(Integer, nullable=False, default=1)
    hours = Column(Numeric(12, 3), nullable=True)
    days = Column(Numeric(12, 3), nullable=True)
    hourly_rate = Column(MONEY, nullable=False, default=0)
    daily_rate = Column(MONEY, nullable=False, default=0)
    markup_type = Column(ADJUSTMENT_TYPE, nullable=False, default=AdjustmentType.NONE)
    markup_value = Column(MONEY, nullable=False, default=0)
    total_cost = Column(MONEY, nullable=False, default=0)
    markup_amount = Column(MONEY, nullable=False, default=0)
    total_price = Column(MONEY, nullable=False, default=0)
    notes = Column(Text, nullable=True)

    # Relationships
    estimate = relationship('Estimate', back_populates='labor_items')

    def __repr__(self):
        return f"<EstimateLaborItem(id={self.id}, estimate_id={self.estimate_id}, rate_type='{self.rate_type.value}', total={self.total_price})>"

    def pricing_input(self):
        return {
            'rate_type': self.rate_type,
            'quantity': self.quantity,
            'hours': self.hours,
            'days': self.days,
            'hourly_rate': self.hourly_rate,
            'daily_rate': self.daily_rate,
            'markup_type': self.markup_type,
            'markup_value': self.markup_value,
        }

    def copy_fields(self):
        """Input fields only; used to seed a revision."""
        return {
            'sort_order': self.sort_order,
            'description': self.description,
            'rate_type': self.rate_type,
            'labor_rate_type_id': self.labor_rate_type_id,
            'quantity': self.quantity,
            'hours': self.hours,
            'days': self.days,
            'hourly_rate': self.hourly_rate,
            'daily_rate': self.daily_rate,
            'markup_type': self.markup_type,
            'markup_value': self.markup_value,
            'notes': self.notes,
        }

    def to_dict(self):
        return {
            'id': self.id,
            'sort_order': self.sort_order,
            'description': self.description,
            'rate_type': self.rate_type.value,
            'labor_rate_type_id': self.labor_rate_type_id,
            'quantity': self.quantity,
            'hours': None if self.hours is None else str(self.hours),
            'days': None if self.days is None else str(self.days),
            'hourly_rate': str(self.hourly_rate),
            'daily_rate': str(self.daily_rate),
            'markup_type': self.markup_type.value,
            'markup_value': str(self.markup_value),
            'total_cost': str(self.total_cost),
            'markup_amount': str(self.markup_amount),
            'total_price': str(self.total_price),
            'notes': self.notes,
        }
