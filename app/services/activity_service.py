"""
Activity logging service for the estimate audit trail.
"""
from app.models.estimate_activity import EstimateActivity, ActivityAction
from datetime import datetime
import logging

logger = logging.getLogger(__name__)


def log_activity(
    session,
    estimate,
    action: ActivityAction,
    actor_id: str,
    description: str = None
) -> EstimateActivity:
    """
    Append an activity record to an estimate.

    Args:
        session: Database session
        estimate: Estimate the action was performed on
        action: ActivityAction enum value
        actor_id: Id of the user who performed the action
        description: Optional free text shown in the history

    Returns:
        The new EstimateActivity (flushed with the caller's transaction)
    """
    activity = EstimateActivity(
        action=action,
        actor_id=str(actor_id),
        description=description,
        created_at=datetime.now()
    )
    estimate.activities.append(activity)
    session.add(activity)
    # Note: Caller is responsible for committing the session

    logger.info(f"Activity {action.value} by {actor_id} on estimate {estimate.estimate_no}")
    return activity


def get_activities(
    session,
    estimate_id: int,
    limit: int = 100,
    offset: int = 0,
    action_filter: ActivityAction = None
):
    """
    Retrieve the activity history of an estimate, oldest first.

    Args:
        session: Database session
        estimate_id: Estimate ID
        limit: Max number of results
        offset: Pagination offset
        action_filter: Only return this action

    Returns:
        List of EstimateActivity objects
    """
    query = session.query(EstimateActivity).filter(
        EstimateActivity.estimate_id == estimate_id
    )

    if action_filter:
        query = query.filter(EstimateActivity.action == action_filter)

    query = query.order_by(EstimateActivity.created_at.asc(), EstimateActivity.id.asc())
    query = query.limit(limit).offset(offset)

    return query.all()
