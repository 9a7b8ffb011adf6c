"""
Estimate activity model: append-only audit trail of workflow actions.
"""
from sqlalchemy import Column, BigInteger, String, Text, DateTime, ForeignKey, Enum as SQLEnum, event
from sqlalchemy.orm import relationship
from datetime import datetime
import enum

from app.database import Base, BigIntegerId


class ActivityAction(enum.Enum):
    """Enumeration of recorded estimate actions."""
    CREATED = "CREATED"
    UPDATED = "UPDATED"
    SUBMITTED = "SUBMITTED"
    RESUBMITTED = "RESUBMITTED"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    REVISION_REQUESTED = "REVISION_REQUESTED"
    REVISION_CREATED = "REVISION_CREATED"
    CANCELLED = "CANCELLED"
    CONVERTED = "CONVERTED"


class EstimateActivity(Base):
    """
    Activity log entry for an estimate.
    Rows are inserted once and never updated or deleted.
    """
    __tablename__ = 'estimate_activity'

    id = Column(BigIntegerId, primary_key=True, autoincrement=True)
    estimate_id = Column(BigInteger, ForeignKey('estimate.id'), nullable=False, index=True)
    action = Column(SQLEnum(ActivityAction, name='estimate_activity_action'), nullable=False, index=True)
    actor_id = Column(String(64), nullable=False)
    description = Column(Text)
    created_at = Column(DateTime(timezone=True), default=datetime.now, nullable=False, index=True)

    # Relationships
    estimate = relationship('Estimate', back_populates='activities')

    def __repr__(self):
        return f"<EstimateActivity {self.action.value} by {self.actor_id} at {self.created_at}>"

    def to_dict(self):
        return {
            'id': self.id,
            'action': self.action.value,
            'actor_id': self.actor_id,
            'description': self.description,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }


@event.listens_for(EstimateActivity, 'before_update')
def _reject_activity_update(mapper, connection, target):
    raise RuntimeError(f"Estimate activity {target.id} is append-only and cannot be modified")


@event.listens_for(EstimateActivity, 'before_delete')
def _reject_activity_delete(mapper, connection, target):
    raise RuntimeError(f"Estimate activity {target.id} is append-only and cannot be deleted")
