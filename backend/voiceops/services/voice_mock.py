"""Mock voice provider for development and testing."""

import uuid
from dataclasses import dataclass, field
from typing import Any

from voiceops.services.voice_protocol import (
    CallRequest,
    CallResult,
    Recording,
    VoiceProviderError,
    VoiceProviderProtocol,
)


@dataclass
class MockExecution:
    """Internal representation of a mock call execution."""

    id: str
    agent_id: str
    recipient_phone_number: str
    from_phone_number: str | None = None
    user_data: dict[str, Any] = field(default_factory=dict)
    status: str = "queued"
    duration: int = 0
    transcript: str | None = None
    recording_url: str | None = None
    cost: float = 0.0


class MockVoiceProvider(VoiceProviderProtocol):
    """
    In-process voice provider.

    Records every request instead of dialing. Failures can be forced for a
    phone number or for the next call to simulate provider errors.
    """

    def __init__(self) -> None:
        self._executions: dict[str, MockExecution] = {}
        self._agents: dict[str, dict[str, Any]] = {}
        self._recordings: dict[str, Recording] = {}
        self._failing_numbers: dict[str, VoiceProviderError] = {}
        self._next_error: VoiceProviderError | None = None
        self.placed_calls: list[CallRequest] = []
        self.stopped_calls: list[str] = []

    async def initiate_call(self, request: CallRequest) -> CallResult:
        """Record a mock call and hand back a fresh execution id."""
        if self._next_error is not None:
            error, self._next_error = self._next_error, None
            raise error
        if request.recipient_phone_number in self._failing_numbers:
            raise self._failing_numbers[request.recipient_phone_number]

        execution_id = f"exec-{uuid.uuid4().hex[:16]}"
        self._executions[execution_id] = MockExecution(
            id=execution_id,
            agent_id=request.agent_id,
            recipient_phone_number=request.recipient_phone_number,
            from_phone_number=request.from_phone_number,
            user_data=dict(request.user_data),
        )
        self.placed_calls.append(request)
        return CallResult(execution_id=execution_id, status="queued", message="Call queued")

    async def stop_call(self, execution_id: str) -> dict[str, Any]:
        execution = self._executions.get(execution_id)
        if not execution:
            raise VoiceProviderError(404, "", "Execution not found")
        execution.status = "stopped"
        self.stopped_calls.append(execution_id)
        return {"execution_id": execution_id, "status": "stopped"}

    async def get_execution(self, execution_id: str) -> dict[str, Any]:
        execution = self._executions.get(execution_id)
        if not execution:
            raise VoiceProviderError(404, "", "Execution not found")
        return {
            "id": execution.id,
            "agent_id": execution.agent_id,
            "status": execution.status,
            "conversation_time": execution.duration,
            "telephony_data": {
                "duration": execution.duration,
                "to_number": execution.recipient_phone_number,
                "from_number": execution.from_phone_number,
                "recording_url": execution.recording_url,
                "provider_call_id": f"prov-{execution.id}",
            },
            "transcript": execution.transcript,
            "total_cost": execution.cost,
            "created_at": None,
            "updated_at": None,
        }

    async def get_execution_logs(self, execution_id: str) -> list[dict[str, Any]]:
        if execution_id not in self._executions:
            raise VoiceProviderError(404, "", "Execution not found")
        return [{"component": "mock", "type": "request", "data": "call queued"}]

    async def list_agents(self) -> list[dict[str, Any]]:
        return list(self._agents.values())

    async def get_agent(self, agent_id: str) -> dict[str, Any]:
        agent = self._agents.get(agent_id)
        if agent is None:
            raise VoiceProviderError(404, "", "Agent not found")
        return agent

    async def create_agent(self, config: dict[str, Any]) -> dict[str, Any]:
        agent_id = f"agent-{uuid.uuid4().hex[:12]}"
        self._agents[agent_id] = {"agent_id": agent_id, **config}
        return {"agent_id": agent_id, "status": "created"}

    async def update_agent(self, agent_id: str, config: dict[str, Any]) -> dict[str, Any]:
        if agent_id not in self._agents:
            raise VoiceProviderError(404, "", "Agent not found")
        self._agents[agent_id] = {"agent_id": agent_id, **config}
        return {"agent_id": agent_id, "status": "updated"}

    async def delete_agent(self, agent_id: str) -> dict[str, Any]:
        if self._agents.pop(agent_id, None) is None:
            raise VoiceProviderError(404, "", "Agent not found")
        return {"agent_id": agent_id, "status": "deleted"}

    async def fetch_recording(self, url: str) -> Recording:
        recording = self._recordings.get(url)
        if recording is None:
            raise VoiceProviderError(404, "", "Recording not available")
        return recording

    # Test helper methods

    def fail_number(self, phone_number: str, status_code: int = 500, body: str = "provider error") -> None:
        """Make every call to ``phone_number`` fail."""
        self._failing_numbers[phone_number] = VoiceProviderError(status_code, body)

    def fail_next_call(self, status_code: int = 500, body: str = "provider error") -> None:
        """Make only the next call fail."""
        self._next_error = VoiceProviderError(status_code, body)

    def add_recording(self, url: str, content: bytes, content_type: str = "audio/mpeg") -> None:
        """Serve ``content`` for ``url`` from fetch_recording."""
        self._recordings[url] = Recording(content=content, content_type=content_type)

    def finish_execution(
        self,
        execution_id: str,
        status: str = "completed",
        duration: int = 60,
        transcript: str | None = None,
        recording_url: str | None = None,
        cost: float = 0.0,
    ) -> None:
        """Set the final state of an execution (for testing)."""
        execution = self._executions[execution_id]
        execution.status = status
        execution.duration = duration
        execution.transcript = transcript
        execution.recording_url = recording_url
        execution.cost = cost

    def get_execution_record(self, execution_id: str) -> MockExecution | None:
        """Get a mock execution by id (for testing)."""
        return self._executions.get(execution_id)

    def reset(self) -> None:
        """Reset all mock data (for testing)."""
        self._executions.clear()
        self._agents.clear()
        self._recordings.clear()
        self._failing_numbers.clear()
        self._next_error = None
        self.placed_calls.clear()
        self.stopped_calls.clear()
