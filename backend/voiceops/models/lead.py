"""Campaign lead domain helpers."""

import re
from enum import Enum


class LeadStage(str, Enum):
    """Sales stage of a campaign lead."""

    NEW = "new"
    CONTACTED = "contacted"
    INTERESTED = "interested"
    PARTIALLY_INTERESTED = "partially_interested"
    NOT_INTERESTED = "not_interested"
    LOST = "lost"


# E.164 format: + followed by 1-15 digits
E164_PATTERN = re.compile(r"^\+[1-9]\d{1,14}$")


def validate_phone_number(phone: str) -> str:
    """Validate and return phone number in E.164 format."""
    if not phone:
        raise ValueError("Phone number is required")
    if not E164_PATTERN.match(phone):
        raise ValueError(
            f"Invalid phone number format: {phone}. Must be E.164 format (e.g., +919811112222)"
        )
    return phone
