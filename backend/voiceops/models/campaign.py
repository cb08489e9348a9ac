"""Campaign domain model."""

from enum import Enum


class CampaignStatus(str, Enum):
    """Campaign status."""

    DRAFT = "draft"
    RUNNING = "running"
    PAUSED = "paused"
    STOPPED = "stopped"  # cannot be resumed
    COMPLETED = "completed"


# Campaigns in these states are skipped by the dispatcher.
NON_DISPATCHABLE_STATUSES = frozenset({CampaignStatus.PAUSED, CampaignStatus.STOPPED})

# Allowed transitions per action: action -> (from statuses, to status)
CAMPAIGN_TRANSITIONS: dict[str, tuple[frozenset[CampaignStatus], CampaignStatus]] = {
    "start": (frozenset({CampaignStatus.DRAFT}), CampaignStatus.RUNNING),
    "pause": (frozenset({CampaignStatus.RUNNING}), CampaignStatus.PAUSED),
    "resume": (frozenset({CampaignStatus.PAUSED}), CampaignStatus.RUNNING),
    "stop": (
        frozenset({CampaignStatus.RUNNING, CampaignStatus.PAUSED}),
        CampaignStatus.STOPPED,
    ),
}


class InvalidCampaignStateError(Exception):
    """Raised when an invalid campaign state transition is attempted."""

    def __init__(self, current_status: CampaignStatus, attempted_action: str, reason: str = ""):
        self.current_status = current_status
        self.attempted_action = attempted_action
        self.reason = reason
        message = f"Cannot {attempted_action} campaign in {current_status.value} status"
        if reason:
            message += f": {reason}"
        super().__init__(message)


def next_campaign_status(current: CampaignStatus, action: str) -> CampaignStatus:
    """
    Resolve the status a campaign moves to for an action.

    Raises:
        InvalidCampaignStateError: If the action is not allowed from ``current``
    """
    allowed_from, target = CAMPAIGN_TRANSITIONS[action]
    if current not in allowed_from:
        raise InvalidCampaignStateError(current, action)
    return target
