"""Campaign call queue domain model."""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any


class QueueStatus(str, Enum):
    """Status of a queued call attempt."""

    PENDING = "pending"  # waiting for the dispatcher
    IN_PROGRESS = "in_progress"  # call placed, outcome not known yet
    COMPLETED = "completed"
    FAILED = "failed"  # placement failed, retryable by hand
    RETRY_PENDING = "retry_pending"  # unanswered, scheduled again
    MAX_RETRIES_REACHED = "max_retries_reached"
    CANCELLED = "cancelled"


ACTIVE_STATUSES = frozenset(
    {QueueStatus.PENDING, QueueStatus.IN_PROGRESS, QueueStatus.RETRY_PENDING}
)
TERMINAL_STATUSES = frozenset(
    {
        QueueStatus.COMPLETED,
        QueueStatus.FAILED,
        QueueStatus.MAX_RETRIES_REACHED,
        QueueStatus.CANCELLED,
    }
)

# Raw SQL form of ACTIVE_STATUSES, shared by the partial unique index and
# the conflict target of the enqueue insert. Both must match exactly.
ACTIVE_STATUS_SQL = "status IN ('pending', 'in_progress', 'retry_pending')"


class InvalidStatusTransitionError(Exception):
    """Raised when an invalid queue status transition is attempted."""

    def __init__(self, current_status: QueueStatus, attempted_action: str):
        self.current_status = current_status
        self.attempted_action = attempted_action
        super().__init__(f"Cannot {attempted_action} from status {current_status.value}")


class QueueOperationError(Exception):
    """Base class for queue precondition and storage errors."""

    status_code: int = 400
    default_message: str = "Queue operation failed"

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class CampaignNotFoundError(QueueOperationError):
    status_code = 404
    default_message = "Campaign not found"


class CampaignAccessError(QueueOperationError):
    status_code = 403
    default_message = "Forbidden"


class NoAgentAssignedError(QueueOperationError):
    default_message = "No agent assigned to this campaign"


class NoLeadsSelectedError(QueueOperationError):
    default_message = "No valid leads selected"


class AllLeadsAlreadyQueuedError(QueueOperationError):
    status_code = 409
    default_message = "All selected leads are already in the queue"


class NoFailedItemsError(QueueOperationError):
    default_message = "No failed items to retry"


class EnqueueFailedError(QueueOperationError):
    status_code = 500
    default_message = "Failed to enqueue leads"


def compute_priorities(selected_lead_ids: list[str]) -> dict[str, int]:
    """
    Map each selected lead to its queue priority.

    Earlier selections get higher priority: ``len(selection) - index``.
    A lead selected twice keeps its first (highest) priority.
    """
    total = len(selected_lead_ids)
    priorities: dict[str, int] = {}
    for index, lead_id in enumerate(selected_lead_ids):
        priorities.setdefault(lead_id, total - index)
    return priorities


@dataclass
class QueueStats:
    """Queue row counts for one campaign."""

    pending: int = 0
    in_progress: int = 0
    completed: int = 0
    failed: int = 0
    retry_pending: int = 0
    max_retries_reached: int = 0
    cancelled: int = 0

    @property
    def total(self) -> int:
        return (
            self.pending
            + self.in_progress
            + self.completed
            + self.failed
            + self.retry_pending
            + self.max_retries_reached
            + self.cancelled
        )

    @property
    def finished(self) -> int:
        return self.completed + self.failed + self.max_retries_reached

    @property
    def progress(self) -> float:
        """
        Fraction of enqueued rows that reached an outcome.

        progress = (completed + failed + max_retries_reached) / total
        """
        if self.total == 0:
            return 0.0
        return self.finished / self.total

    @property
    def is_active(self) -> bool:
        """True while any row can still change on its own."""
        return (self.pending + self.in_progress + self.retry_pending) > 0

    def add(self, status: QueueStatus, count: int = 1) -> None:
        setattr(self, status.value, getattr(self, status.value) + count)

    def to_dict(self) -> dict[str, Any]:
        return {
            "pending": self.pending,
            "in_progress": self.in_progress,
            "completed": self.completed,
            "failed": self.failed,
            "retry_pending": self.retry_pending,
            "max_retries_reached": self.max_retries_reached,
            "cancelled": self.cancelled,
            "total": self.total,
            "progress": self.progress,
            "is_active": self.is_active,
        }


@dataclass
class QueueItem:
    """
    One queued call attempt for a (campaign, lead) pair.

    The transition methods are the only way the queue status changes, so the
    dispatcher, the outcome webhook and the retry/cancel controllers all share
    the same rules about terminal states.
    """

    campaign_id: str
    lead_id: str
    client_id: str
    agent_id: str | None = None
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    priority: int = 0
    status: QueueStatus = QueueStatus.PENDING
    error_message: str | None = None

    attempt_count: int = 0
    call_id: str | None = None

    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    started_at: datetime | None = None
    completed_at: datetime | None = None
    last_attempt_at: datetime | None = None
    next_retry_at: datetime | None = None

    def _update_timestamp(self) -> None:
        self.updated_at = datetime.now(timezone.utc)

    def _can_transition_from(self, allowed_statuses: frozenset[QueueStatus] | set[QueueStatus], action: str) -> None:
        if self.status not in allowed_statuses:
            raise InvalidStatusTransitionError(self.status, action)

    def start(self) -> None:
        """Dispatcher picked the row up; counts as one attempt."""
        self._can_transition_from({QueueStatus.PENDING, QueueStatus.RETRY_PENDING}, "start")
        now = datetime.now(timezone.utc)
        self.status = QueueStatus.IN_PROGRESS
        self.attempt_count += 1
        self.started_at = now
        self.last_attempt_at = now
        self.next_retry_at = None
        self._update_timestamp()

    def fail(self, reason: str) -> None:
        """
        Mark the row as failed.

        Allowed before the call is placed (missing lead, agent or caller id)
        and after a placement error.
        """
        self._can_transition_from(
            {QueueStatus.PENDING, QueueStatus.RETRY_PENDING, QueueStatus.IN_PROGRESS}, "fail"
        )
        self.status = QueueStatus.FAILED
        self.error_message = reason
        self.completed_at = datetime.now(timezone.utc)
        self._update_timestamp()

    def complete(self) -> None:
        """The call connected and ended."""
        self._can_transition_from({QueueStatus.IN_PROGRESS}, "complete")
        self.status = QueueStatus.COMPLETED
        self.error_message = None
        self.completed_at = datetime.now(timezone.utc)
        self._update_timestamp()

    def record_unanswered(self, max_attempts: int, retry_delay_minutes: int) -> None:
        """
        The call ended without a connection.

        Schedules another attempt while attempts remain, otherwise the row is
        closed as max_retries_reached.
        """
        self._can_transition_from({QueueStatus.IN_PROGRESS}, "record_unanswered")
        now = datetime.now(timezone.utc)
        if self.attempt_count < max_attempts:
            self.status = QueueStatus.RETRY_PENDING
            self.next_retry_at = now + timedelta(minutes=retry_delay_minutes)
            self.error_message = (
                f"No answer - retry {self.attempt_count + 1}/{max_attempts} scheduled"
            )
        else:
            self.status = QueueStatus.MAX_RETRIES_REACHED
            self.completed_at = now
            self.error_message = f"Max attempts ({max_attempts}) reached without connection"
        self._update_timestamp()

    def retry(self) -> None:
        """Manual requeue of a failed row."""
        self._can_transition_from({QueueStatus.FAILED}, "retry")
        self.status = QueueStatus.PENDING
        self.error_message = None
        self.started_at = None
        self.completed_at = None
        self.next_retry_at = None
        self._update_timestamp()

    def cancel(self) -> None:
        """Soft-cancel a row that has not been started."""
        self._can_transition_from({QueueStatus.PENDING, QueueStatus.RETRY_PENDING}, "cancel")
        self.status = QueueStatus.CANCELLED
        self.completed_at = datetime.now(timezone.utc)
        self._update_timestamp()
