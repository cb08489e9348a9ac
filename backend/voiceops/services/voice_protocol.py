"""Voice provider protocol definition."""

from dataclasses import dataclass, field
from typing import Any, Protocol


class VoiceProviderError(Exception):
    """Raised when the voice provider answers with a non-2xx status."""

    def __init__(self, status_code: int, body: str = "", message: str | None = None):
        self.status_code = status_code
        self.body = body
        super().__init__(message or f"Voice API error: {status_code} - {body}")


@dataclass
class CallRequest:
    """Outbound call placement request."""

    agent_id: str  # provider-side agent id
    recipient_phone_number: str
    from_phone_number: str | None = None
    user_data: dict[str, Any] = field(default_factory=dict)

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "agent_id": self.agent_id,
            "recipient_phone_number": self.recipient_phone_number,
            "user_data": self.user_data,
        }
        if self.from_phone_number:
            payload["from_phone_number"] = self.from_phone_number
        return payload


@dataclass
class CallResult:
    """Result of a call placement."""

    execution_id: str
    status: str
    message: str | None = None


@dataclass
class Recording:
    """Downloaded recording bytes."""

    content: bytes
    content_type: str = "audio/mpeg"


class VoiceProviderProtocol(Protocol):
    """Protocol for voice provider implementations."""

    async def initiate_call(self, request: CallRequest) -> CallResult:
        """
        Place an outbound call.

        Returns:
            CallResult with the provider execution id

        Raises:
            VoiceProviderError: If the provider rejects the call
        """
        ...

    async def stop_call(self, execution_id: str) -> dict[str, Any]:
        """Stop a queued or scheduled call."""
        ...

    async def get_execution(self, execution_id: str) -> dict[str, Any]:
        """Fetch the provider's raw execution record."""
        ...

    async def get_execution_logs(self, execution_id: str) -> list[dict[str, Any]]:
        """Fetch the provider's execution log lines."""
        ...

    async def list_agents(self) -> list[dict[str, Any]]:
        """List provider agents."""
        ...

    async def get_agent(self, agent_id: str) -> dict[str, Any]:
        """Fetch one provider agent."""
        ...

    async def create_agent(self, config: dict[str, Any]) -> dict[str, Any]:
        """Create a provider agent."""
        ...

    async def update_agent(self, agent_id: str, config: dict[str, Any]) -> dict[str, Any]:
        """Replace a provider agent's configuration."""
        ...

    async def delete_agent(self, agent_id: str) -> dict[str, Any]:
        """Delete a provider agent."""
        ...

    async def fetch_recording(self, url: str) -> Recording:
        """Download a recording from a provider URL."""
        ...
