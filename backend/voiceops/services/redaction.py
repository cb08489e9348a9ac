"""Field-class redaction for data leaving the API."""

import base64
import binascii
import fnmatch
import json
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from voiceops.models.user import INTERNAL_ROLES, UserRole

TRANSPORT_PREFIX = "enc:"
_DROP = object()


class FieldClass(str, Enum):
    """How a field is treated on the way out."""

    PLAIN = "plain"
    PHONE = "phone"
    EMAIL = "email"
    NAME = "name"
    OPAQUE_ID = "opaque_id"
    SECRET_BLOB = "secret_blob"
    INTERNAL = "internal"


def mask_phone(value: str | None) -> str:
    """Keep the last 4 characters."""
    if not value or len(value) <= 4:
        return "****"
    return "*" * (len(value) - 4) + value[-4:]


def mask_email(value: str | None) -> str:
    """Keep the first character of the local part and the domain."""
    if not value or value.count("@") != 1:
        return "***@***.***"
    local, domain = value.split("@")
    if not local or not domain:
        return "***@***.***"
    return local[0] + "***@" + domain


def mask_name(value: str | None) -> str:
    """Initials only: ``"john doe" -> "J.D."``."""
    parts = (value or "").split()
    if not parts:
        return "***"
    return ".".join(part[0].upper() for part in parts) + "."


def mask_opaque_id(value: str | None) -> str:
    if not value:
        return "********"
    return value[:8] + "..."


def is_transport_encoded(value: Any) -> bool:
    return isinstance(value, str) and value.startswith(TRANSPORT_PREFIX)


def encode_for_transport(value: Any) -> str | None:
    """
    Encode free text for transport as ``enc:`` + base64(UTF-8).

    Structured values are serialized to JSON first. Already encoded values
    pass through unchanged.
    """
    if value is None or value == "":
        return None
    if is_transport_encoded(value):
        return value
    text = value if isinstance(value, str) else json.dumps(value, default=str)
    return TRANSPORT_PREFIX + base64.b64encode(text.encode("utf-8")).decode("ascii")


def decode_transport(value: str | None) -> str | None:
    """Inverse of encode_for_transport. Plain strings are returned as is."""
    if not is_transport_encoded(value):
        return value
    try:
        return base64.b64decode(value[len(TRANSPORT_PREFIX):], validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError) as exc:
        raise ValueError("Malformed transport-encoded value") from exc


# Fields removed from client-facing responses
INTERNAL_FIELDS = (
    # model internals
    "model_name", "model_provider", "llm_provider", "llm_model", "ai_model",
    "token_usage", "tokens_used", "prompt_tokens", "completion_tokens", "total_tokens",
    "usage_breakdown",
    # latency and diagnostics
    "latency_ms", "processing_time_ms", "response_time_ms", "api_latency", "ttfb_ms",
    "tts_latency", "stt_latency", "llm_latency",
    # system configuration
    "system_prompt", "original_system_prompt", "current_system_prompt", "agent_config",
    "webhook_config", "api_key", "api_secret", "hashed_password",
    # encryption metadata
    "encryption_key_id", "encryption_version", "iv", "tag", "ciphertext",
    # raw provider data
    "provider_response", "raw_response", "debug_info", "internal_notes", "admin_notes",
    "metadata", "call_metadata", "cost", "total_cost",
)

BASE_FIELD_CLASSES: dict[str, FieldClass] = {
    **{name: FieldClass.INTERNAL for name in INTERNAL_FIELDS},
    "phone": FieldClass.PHONE,
    "phone_number": FieldClass.PHONE,
    "to_number": FieldClass.PHONE,
    "from_number": FieldClass.PHONE,
    "email": FieldClass.EMAIL,
    "name": FieldClass.NAME,
    "full_name": FieldClass.NAME,
    "lead_id": FieldClass.OPAQUE_ID,
    "transcript": FieldClass.SECRET_BLOB,
    "summary": FieldClass.SECRET_BLOB,
    "notes": FieldClass.SECRET_BLOB,
    "extracted_data": FieldClass.SECRET_BLOB,
    # names that would otherwise hit the *_name rule
    "agent_name": FieldClass.PLAIN,
    "campaign_name": FieldClass.PLAIN,
    "app_name": FieldClass.PLAIN,
}

BASE_PATTERNS: tuple[tuple[str, FieldClass], ...] = (
    ("*_phone", FieldClass.PHONE),
    ("*_phone_number", FieldClass.PHONE),
    ("*_email", FieldClass.EMAIL),
    ("*_name", FieldClass.NAME),
    ("external_*_id", FieldClass.OPAQUE_ID),
    ("provider_*_id", FieldClass.OPAQUE_ID),
)

_MASKS: dict[FieldClass, Callable[[Any], Any]] = {
    FieldClass.PHONE: lambda value: mask_phone(None if value is None else str(value)),
    FieldClass.EMAIL: lambda value: mask_email(None if value is None else str(value)),
    FieldClass.NAME: lambda value: mask_name(None if value is None else str(value)),
    FieldClass.OPAQUE_ID: lambda value: mask_opaque_id(None if value is None else str(value)),
    FieldClass.SECRET_BLOB: encode_for_transport,
}


@dataclass(frozen=True)
class RedactionPolicy:
    """
    Maps field names to classes, and classes to a treatment.

    Classes come from the exact field name first, then from the first
    matching glob pattern, so new fields named like existing ones inherit
    their treatment. ``plain`` holds classes passed through unchanged and
    ``drop`` holds classes removed entirely.
    """

    field_classes: Mapping[str, FieldClass] = field(default_factory=lambda: dict(BASE_FIELD_CLASSES))
    patterns: tuple[tuple[str, FieldClass], ...] = BASE_PATTERNS
    plain: frozenset[FieldClass] = frozenset({FieldClass.PLAIN})
    drop: frozenset[FieldClass] = frozenset()

    def classify(self, name: str) -> FieldClass:
        exact = self.field_classes.get(name)
        if exact is not None:
            return exact
        for pattern, field_class in self.patterns:
            if fnmatch.fnmatchcase(name, pattern):
                return field_class
        return FieldClass.PLAIN

    def with_classes(self, **overrides: FieldClass) -> "RedactionPolicy":
        """Copy of the policy with some field names reclassified."""
        return RedactionPolicy(
            field_classes={**self.field_classes, **overrides},
            patterns=self.patterns,
            plain=self.plain,
            drop=self.drop,
        )

    def _value(self, field_class: FieldClass, value: Any) -> Any:
        if field_class in self.drop:
            return _DROP
        if field_class in self.plain:
            return self.redact(value)
        return _MASKS[field_class](value)

    def redact_field(self, name: str, value: Any) -> Any:
        """Redact one value as if it were stored under ``name``."""
        return self._value(self.classify(name), value)

    def redact(self, data: Any) -> Any:
        """Redact mappings and lists recursively; scalars pass through."""
        if isinstance(data, Mapping):
            result: dict[str, Any] = {}
            for key, value in data.items():
                redacted = self.redact_field(str(key), value)
                if redacted is not _DROP:
                    result[key] = redacted
            return result
        if isinstance(data, (list, tuple)):
            return [self.redact(item) for item in data]
        return data


# Clients and their sub-users: internals and provider ids removed, PII masked
CLIENT_POLICY = RedactionPolicy(drop=frozenset({FieldClass.INTERNAL})).with_classes(
    external_call_id=FieldClass.INTERNAL,
    external_agent_id=FieldClass.INTERNAL,
    external_batch_id=FieldClass.INTERNAL,
    provider_call_id=FieldClass.INTERNAL,
    provider_agent_id=FieldClass.INTERNAL,
)

# Admins and engineers: internals kept, names readable, contact data masked
INTERNAL_POLICY = RedactionPolicy(
    plain=frozenset({FieldClass.PLAIN, FieldClass.INTERNAL, FieldClass.NAME}),
)


def policy_for_role(role: UserRole | str | None) -> RedactionPolicy:
    """Policy for a viewer role. Unknown roles get the client policy."""
    try:
        resolved = UserRole(role) if role is not None else None
    except ValueError:
        resolved = None
    if resolved in INTERNAL_ROLES:
        return INTERNAL_POLICY
    return CLIENT_POLICY


def redact_for_role(data: Any, role: UserRole | str | None) -> Any:
    return policy_for_role(role).redact(data)


def to_display_profile(profile: Mapping[str, Any], policy: RedactionPolicy) -> dict[str, Any]:
    """Public shape of a profile: display fields instead of raw contact data."""
    created_at = profile.get("created_at")
    return {
        "id": profile.get("id"),
        "username": profile.get("username"),
        "role": profile.get("role"),
        "client_id": profile.get("client_id"),
        "is_active": profile.get("is_active", True),
        "display_name": policy.redact_field("full_name", profile.get("full_name")),
        "display_email": policy.redact_field("email", profile.get("email")),
        "display_phone": policy.redact_field("phone", profile.get("phone")),
        "created_at": created_at.isoformat() if hasattr(created_at, "isoformat") else created_at,
    }
