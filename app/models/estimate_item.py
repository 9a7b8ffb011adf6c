"""EstimateItem model for material, equipment, service and other lines."""
import enum
from sqlalchemy import Column, BigInteger, Integer, String, Numeric, Text, ForeignKey, Enum as SQLEnum
from sqlalchemy.orm import relationship
from app.database import Base, BigIntegerId
from app.models.estimate import ADJUSTMENT_TYPE, AdjustmentType, MONEY


class ItemType(enum.Enum):
    """Kind of non-labor line."""
    MATERIAL = "MATERIAL"
    EQUIPMENT = "EQUIPMENT"
    SERVICE = "SERVICE"
    OTHER = "OTHER"


class EstimateItem(Base):
    """
    Estimate Item (material line).

    total_cost, markup_amount and total_price are derived from quantity,
    unit_cost and the markup and are rewritten on every recompute.
    """

    __tablename__ = 'estimate_item'

    id = Column(BigIntegerId, primary_key=True, autoincrement=True)
    estimate_id = Column(BigInteger, ForeignKey('estimate.id'), nullable=False, index=True)
    sort_order = Column(Integer, nullable=False, default=0)
    item_type = Column(SQLEnum(ItemType, name='estimate_item_type'), nullable=False, default=ItemType.MATERIAL)
    inventory_item_id = Column(String(64), nullable=True)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    sku = Column(String(100), nullable=True)
    quantity = Column(Numeric(18, 6), nullable=False)
    unit = Column(String(16), nullable=False, default='pcs')
    unit_cost = Column(MONEY, nullable=False)
    markup_type = Column(ADJUSTMENT_TYPE, nullable=False, default=AdjustmentType.NONE)
    markup_value = Column(MONEY, nullable=False, default=0)
    total_cost = Column(MONEY, nullable=False, default=0)
    markup_amount = Column(MONEY, nullable=False, default=0)
    total_price = Column(MONEY, nullable=False, default=0)
    notes = Column(Text, nullable=True)

    # Relationships
    estimate = relationship('Estimate', back_populates='items')

    def __repr__(self):
        return f"<EstimateItem(id={self.id}, estimate_id={self.estimate_id}, name='{self.name}', qty={self.quantity}, total={self.total_price})>"

    def pricing_input(self):
        return {
            'item_type': self.item_type,
            'quantity': self.quantity,
            'unit_cost': self.unit_cost,
            'markup_type': self.markup_type,
            'markup_value': self.markup_value,
        }

    def copy_fields(self):
        """Input fields only; used to seed a revision."""
        return {
            'sort_order': self.sort_order,
            'item_type': self.item_type,
            'inventory_item_id': self.inventory_item_id,
            'name': self.name,
            'description': self.description,
            'sku': self.sku,
            'quantity': self.quantity,
            'unit': self.unit,
            'unit_cost': self.unit_cost,
            'markup_type': self.markup_type,
            'markup_value': self.markup_value,
            'notes': self.notes,
        }

    def to_dict(self):
        return {
            'id': self.id,
            'sort_order': self.sort_order,
            'item_type': self.item_type.value,
            'inventory_item_id': self.inventory_item_id,
            'name': self.name,
            'description': self.description,
            'sku': self.sku,
            'quantity': str(self.quantity),
            'unit': self.unit,
            'unit_cost': str(self.unit_cost),
            'markup_type': self.markup_type.value,
            'markup_value': str(self.markup_value),
            'total_cost': str(self.total_cost),
            'markup_amount': str(self.markup_amount),
            'total_price': str(self.total_price),
            'notes': self.notes,
        }
