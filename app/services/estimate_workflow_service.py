"""
Estimate Workflow Service - approval state machine and revisions

This module provides:
- WorkflowAction enum with every action the API exposes
- TRANSITIONS table: (action, current status) -> next status
- One function per action, all funnelled through run_transition()
- create_revision(), which spawns the next version of a rejected or
  revision-requested estimate

Only the latest version of an estimate family may transition. Anything not
in the table raises InvalidStateError naming the status and the action.
"""

import enum
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.orm import Session

from app.blueprints.metrics import record_estimate_transition
from app.exceptions import InvalidStateError, ValidationError
from app.models import (
    Estimate, EstimateActivity, EstimateItem, EstimateLaborItem, EstimateStatus, ActivityAction
)
from app.services.activity_service import log_activity
from app.services.estimate_service import (
    _clean_text, _commit, _lock_estimate, recompute_estimate, revision_number
)

logger = logging.getLogger(__name__)


class WorkflowAction(enum.Enum):
    """Actions accepted by the workflow."""
    SUBMIT = "submit"
    RESUBMIT = "resubmit"
    APPROVE = "approve"
    REJECT = "reject"
    REQUEST_REVISION = "request_revision"
    CANCEL = "cancel"
    CONVERT_TO_QUOTE = "convert_to_quote"
    CREATE_REVISION = "create_revision"


# SUBMITTED is accepted here for legacy rows; submit itself never rests there
CANCELLABLE_STATUSES = frozenset({
    EstimateStatus.DRAFT,
    EstimateStatus.SUBMITTED,
    EstimateStatus.PENDING_MANAGER_APPROVAL,
    EstimateStatus.REVISION_REQUESTED,
    EstimateStatus.APPROVED,
})

# create_revision leaves the source status untouched and spawns a new DRAFT
REVISABLE_STATUSES = frozenset({
    EstimateStatus.REJECTED,
    EstimateStatus.REVISION_REQUESTED,
})

TERMINAL_STATUSES = frozenset({
    EstimateStatus.CONVERTED,
    EstimateStatus.REJECTED,
    EstimateStatus.CANCELLED,
})

TRANSITIONS: Dict[tuple, EstimateStatus] = {
    (WorkflowAction.SUBMIT, EstimateStatus.DRAFT): EstimateStatus.PENDING_MANAGER_APPROVAL,
    (WorkflowAction.RESUBMIT, EstimateStatus.REVISION_REQUESTED): EstimateStatus.PENDING_MANAGER_APPROVAL,
    (WorkflowAction.APPROVE, EstimateStatus.PENDING_MANAGER_APPROVAL): EstimateStatus.APPROVED,
    (WorkflowAction.REQUEST_REVISION, EstimateStatus.PENDING_MANAGER_APPROVAL): EstimateStatus.REVISION_REQUESTED,
    (WorkflowAction.REJECT, EstimateStatus.PENDING_MANAGER_APPROVAL): EstimateStatus.REJECTED,
    (WorkflowAction.CONVERT_TO_QUOTE, EstimateStatus.APPROVED): EstimateStatus.CONVERTED,
}
TRANSITIONS.update({
    (WorkflowAction.CANCEL, status): EstimateStatus.CANCELLED for status in CANCELLABLE_STATUSES
})


@dataclass
class TransitionResult:
    """
    Outcome of a successful workflow action.

    Attributes:
        estimate: The estimate after the action (the new version for create_revision)
        previous_status: Status before the action
        new_status: Status after the action
        activity: Activity record appended for the action
        quote: The created quote, for convert_to_quote only
    """
    estimate: Estimate
    previous_status: EstimateStatus
    new_status: EstimateStatus
    activity: EstimateActivity
    quote: Any = None

    def to_dict(self) -> Dict[str, Any]:
        data = {
            'previous_status': self.previous_status.value,
            'new_status': self.new_status.value,
            'activity': self.activity.to_dict(),
            'estimate': self.estimate.to_dict(),
        }
        if self.quote is not None:
            data['quote'] = self.quote.to_dict()
        return data


def parse_action(action) -> WorkflowAction:
    """Accept an enum member or its URL form ('request-revision')."""
    if isinstance(action, WorkflowAction):
        return action
    try:
        return WorkflowAction(str(action).strip().lower().replace('-', '_'))
    except ValueError:
        raise ValidationError(f'Unknown workflow action: {action}', field='action')


def get_next_status(action: WorkflowAction, status: EstimateStatus) -> Optional[EstimateStatus]:
    return TRANSITIONS.get((action, status))


def can_transition(estimate: Estimate, action) -> bool:
    """Whether the action is legal for this estimate right now."""
    action = parse_action(action)
    if not estimate.is_latest_version:
        return False
    if action == WorkflowAction.CREATE_REVISION:
        return estimate.status in REVISABLE_STATUSES
    if action == WorkflowAction.CONVERT_TO_QUOTE and estimate.quote is not None:
        return False
    return get_next_status(action, estimate.status) is not None


def get_available_actions(estimate: Estimate) -> List[str]:
    """Action names the estimate accepts in its current state, in table order."""
    return [action.value for action in WorkflowAction if can_transition(estimate, action)]


def is_terminal(status: EstimateStatus) -> bool:
    return status in TERMINAL_STATUSES


def _ensure_latest(estimate: Estimate, action: WorkflowAction):
    if not estimate.is_latest_version:
        raise InvalidStateError(
            estimate.status, action.value,
            f'Cannot {action.value} estimate {estimate.estimate_no} in status '
            f'{estimate.status.value}: it is not the latest version'
        )


def run_transition(
    session: Session,
    estimate_id: int,
    action: WorkflowAction,
    actor_id: str,
    activity_action: ActivityAction,
    description: Optional[str] = None,
    apply: Optional[Callable[[Estimate, datetime], Any]] = None,
) -> TransitionResult:
    """
    Lock the estimate, validate the transition against the table, apply it
    and append the activity, all in one commit.

    `apply(estimate, now)` sets action-specific fields; whatever it returns
    is passed back as TransitionResult.quote.
    """
    actor_id = _clean_text(actor_id, 'actor_id', required=True, max_length=64)

    try:
        estimate = _lock_estimate(session, estimate_id)
        _ensure_latest(estimate, action)

        previous_status = estimate.status
        new_status = get_next_status(action, previous_status)
        if new_status is None:
            raise InvalidStateError(previous_status, action.value)

        now = datetime.now()
        extra = apply(estimate, now) if apply else None
        estimate.status = new_status
        estimate.updated_at = now

        activity = log_activity(session, estimate, activity_action, actor_id, description)
        _commit(session)

        record_estimate_transition(action.value)
        logger.info(
            f"Estimate {estimate.estimate_no} v{estimate.version}: "
            f"{previous_status.value} -> {new_status.value} by {actor_id}"
        )
        return TransitionResult(estimate, previous_status, new_status, activity, extra)
    except Exception:
        session.rollback()
        raise


def submit_estimate(session: Session, estimate_id: int, actor_id: str) -> TransitionResult:
    """DRAFT -> PENDING_MANAGER_APPROVAL."""
    def apply(estimate, now):
        estimate.submitted_at = now
        estimate.submitted_by = actor_id

    return run_transition(
        session, estimate_id, WorkflowAction.SUBMIT, actor_id,
        ActivityAction.SUBMITTED, 'Submitted for manager approval', apply
    )


def resubmit_estimate(session: Session, estimate_id: int, actor_id: str) -> TransitionResult:
    """REVISION_REQUESTED -> PENDING_MANAGER_APPROVAL."""
    def apply(estimate, now):
        estimate.submitted_at = now
        estimate.submitted_by = actor_id

    return run_transition(
        session, estimate_id, WorkflowAction.RESUBMIT, actor_id,
        ActivityAction.RESUBMITTED, 'Resubmitted after revision', apply
    )


def approve_estimate(session: Session, estimate_id: int, actor_id: str) -> TransitionResult:
    """PENDING_MANAGER_APPROVAL -> APPROVED."""
    def apply(estimate, now):
        estimate.approved_at = now
        estimate.approved_by = actor_id

    return run_transition(
        session, estimate_id, WorkflowAction.APPROVE, actor_id,
        ActivityAction.APPROVED, 'Approved', apply
    )


def reject_estimate(session: Session, estimate_id: int, actor_id: str, reason: str) -> TransitionResult:
    """PENDING_MANAGER_APPROVAL -> REJECTED. A reason is mandatory."""
    reason = _clean_text(reason, 'reason', required=True)

    def apply(estimate, now):
        estimate.rejected_at = now
        estimate.rejected_by = actor_id
        estimate.rejection_reason = reason

    return run_transition(
        session, estimate_id, WorkflowAction.REJECT, actor_id,
        ActivityAction.REJECTED, f'Rejected: {reason}', apply
    )


def request_revision(
    session: Session, estimate_id: int, actor_id: str, reason: str, notes: Optional[str] = None
) -> TransitionResult:
    """PENDING_MANAGER_APPROVAL -> REVISION_REQUESTED. A reason is mandatory, notes are optional."""
    reason = _clean_text(reason, 'reason', required=True)
    notes = _clean_text(notes, 'notes')

    def apply(estimate, now):
        estimate.revision_requested_at = now
        estimate.revision_requested_by = actor_id
        estimate.revision_reason = reason
        estimate.revision_notes = notes

    return run_transition(
        session, estimate_id, WorkflowAction.REQUEST_REVISION, actor_id,
        ActivityAction.REVISION_REQUESTED, f'Revision requested: {reason}', apply
    )


def cancel_estimate(session: Session, estimate_id: int, actor_id: str, reason: Optional[str] = None) -> TransitionResult:
    """Any open status -> CANCELLED. Irreversible."""
    reason = _clean_text(reason, 'reason')

    def apply(estimate, now):
        estimate.cancelled_at = now
        estimate.cancelled_by = actor_id
        estimate.cancellation_reason = reason

    return run_transition(
        session, estimate_id, WorkflowAction.CANCEL, actor_id,
        ActivityAction.CANCELLED, f'Cancelled: {reason}' if reason else 'Cancelled', apply
    )


def create_revision(session: Session, estimate_id: int, actor_id: str) -> TransitionResult:
    """
    Spawn version N+1 of a REJECTED or REVISION_REQUESTED estimate.

    The new DRAFT copies every line and commercial parameter of its parent
    and becomes the family's latest version; the parent loses the flag in
    the same commit.

    Raises:
        InvalidStateError: parent is not the latest version or not in a
            revisable status
    """
    actor_id = _clean_text(actor_id, 'actor_id', required=True, max_length=64)
    action = WorkflowAction.CREATE_REVISION

    try:
        parent = _lock_estimate(session, estimate_id)
        _ensure_latest(parent, action)
        if parent.status not in REVISABLE_STATUSES:
            raise InvalidStateError(parent.status, action.value)

        root = parent
        while root.parent_estimate is not None:
            root = root.parent_estimate

        version = parent.version + 1
        revision = Estimate(
            estimate_no=revision_number(root.estimate_no, version),
            version=version,
            parent_estimate_id=parent.id,
            is_latest_version=True,
            status=EstimateStatus.DRAFT,
            service_request_id=parent.service_request_id,
            site_visit_id=parent.site_visit_id,
            title=parent.title,
            description=parent.description,
            scope=parent.scope,
            estimated_duration=parent.estimated_duration,
            estimated_start_date=parent.estimated_start_date,
            estimated_end_date=parent.estimated_end_date,
            internal_notes=parent.internal_notes,
            assumptions=parent.assumptions,
            exclusions=parent.exclusions,
            discount_reason=parent.discount_reason,
            revision_notes=parent.revision_notes,
            created_by=actor_id,
            items=[EstimateItem(**item.copy_fields()) for item in parent.items],
            labor_items=[EstimateLaborItem(**item.copy_fields()) for item in parent.labor_items],
            **parent.commercial_params()
        )
        recompute_estimate(revision)

        now = datetime.now()
        parent.is_latest_version = False
        parent.updated_at = now

        session.add(revision)
        session.flush()

        log_activity(
            session, parent, ActivityAction.REVISION_CREATED, actor_id,
            f'Revision v{version} created as {revision.estimate_no}'
        )
        activity = log_activity(
            session, revision, ActivityAction.CREATED, actor_id,
            f'Created as revision v{version} of {parent.estimate_no}'
        )
        _commit(session)

        record_estimate_transition(action.value)
        logger.info(
            f"Estimate {parent.estimate_no} v{parent.version}: revision "
            f"{revision.estimate_no} v{version} created by {actor_id}"
        )
        return TransitionResult(revision, parent.status, revision.status, activity)
    except Exception:
        session.rollback()
        raise


def perform_action(
    session: Session,
    estimate_id: int,
    action,
    actor_id: str,
    payload: Optional[Dict[str, Any]] = None,
    **options
) -> TransitionResult:
    """
    Single entry point for workflow actions coming from the API.

    Args:
        action: WorkflowAction or its name ('submit', 'request-revision', ...)
        payload: Action-specific input (reason, notes, valid_until, ...)
        options: Passed through to quote conversion (number_prefix)
    """
    action = parse_action(action)
    payload = payload or {}

    if action == WorkflowAction.SUBMIT:
        return submit_estimate(session, estimate_id, actor_id)
    if action == WorkflowAction.RESUBMIT:
        return resubmit_estimate(session, estimate_id, actor_id)
    if action == WorkflowAction.APPROVE:
        return approve_estimate(session, estimate_id, actor_id)
    if action == WorkflowAction.REJECT:
        return reject_estimate(session, estimate_id, actor_id, payload.get('reason'))
    if action == WorkflowAction.REQUEST_REVISION:
        return request_revision(session, estimate_id, actor_id, payload.get('reason'), payload.get('notes'))
    if action == WorkflowAction.CANCEL:
        return cancel_estimate(session, estimate_id, actor_id, payload.get('reason'))
    if action == WorkflowAction.CREATE_REVISION:
        return create_revision(session, estimate_id, actor_id)

    from app.services.quote_service import convert_estimate_to_quote
    return convert_estimate_to_quote(
        session, estimate_id, actor_id,
        valid_until=payload.get('valid_until'),
        title=payload.get('title'),
        description=payload.get('description'),
        terms=payload.get('terms'),
        **options
    )
