"""HTTP voice provider implementation."""

from typing import Any

import httpx
import structlog

from voiceops.config import get_settings
from voiceops.services.voice_protocol import (
    CallRequest,
    CallResult,
    Recording,
    VoiceProviderError,
    VoiceProviderProtocol,
)

logger = structlog.get_logger(__name__)


class VoiceClient(VoiceProviderProtocol):
    """
    Voice provider REST client.

    Talks to the provider with a bearer API key. Upstream failures are raised
    as VoiceProviderError with the provider's status and body; nothing is
    retried here.
    """

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        settings = get_settings()
        self._api_key = api_key if api_key is not None else settings.voice_api_key
        self._base_url = (base_url or settings.voice_api_base_url).rstrip("/")
        self._timeout = timeout or settings.voice_timeout_seconds
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self._base_url,
            headers={"Authorization": f"Bearer {self._api_key}"},
            timeout=self._timeout,
            transport=self._transport,
        )

    async def _request(
        self,
        method: str,
        path: str,
        json: dict[str, Any] | None = None,
    ) -> Any:
        try:
            async with self._client() as client:
                response = await client.request(method, path, json=json)
        except httpx.HTTPError as exc:
            logger.warning("voice_api_unreachable", method=method, path=path, error=str(exc))
            raise VoiceProviderError(502, "", f"Voice API unreachable: {exc}") from exc

        if response.is_error:
            logger.warning(
                "voice_api_error",
                method=method,
                path=path,
                status_code=response.status_code,
                body=response.text[:500],
            )
            raise VoiceProviderError(response.status_code, response.text)

        if not response.content:
            return {}
        return response.json()

    async def initiate_call(self, request: CallRequest) -> CallResult:
        """Place an outbound call via POST /call."""
        data = await self._request("POST", "/call", json=request.to_payload())
        execution_id = data.get("execution_id") or data.get("id")
        if not execution_id:
            raise VoiceProviderError(502, str(data), "Voice API response missing execution id")
        return CallResult(
            execution_id=str(execution_id),
            status=str(data.get("status", "queued")),
            message=data.get("message"),
        )

    async def stop_call(self, execution_id: str) -> dict[str, Any]:
        return await self._request("POST", f"/call/{execution_id}/stop")

    async def get_execution(self, execution_id: str) -> dict[str, Any]:
        return await self._request("GET", f"/executions/{execution_id}")

    async def get_execution_logs(self, execution_id: str) -> list[dict[str, Any]]:
        data = await self._request("GET", f"/executions/{execution_id}/log")
        if isinstance(data, dict):
            return list(data.get("data", []))
        return list(data)

    async def list_agents(self) -> list[dict[str, Any]]:
        data = await self._request("GET", "/v2/agent/all")
        return list(data) if isinstance(data, list) else list(data.get("data", []))

    async def get_agent(self, agent_id: str) -> dict[str, Any]:
        return await self._request("GET", f"/v2/agent/{agent_id}")

    async def create_agent(self, config: dict[str, Any]) -> dict[str, Any]:
        return await self._request("POST", "/v2/agent", json=config)

    async def update_agent(self, agent_id: str, config: dict[str, Any]) -> dict[str, Any]:
        return await self._request("PUT", f"/v2/agent/{agent_id}", json=config)

    async def delete_agent(self, agent_id: str) -> dict[str, Any]:
        return await self._request("DELETE", f"/v2/agent/{agent_id}")

    async def fetch_recording(self, url: str) -> Recording:
        """Download a recording. Recording URLs are absolute and unauthenticated."""
        async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
            response = await client.get(url)
        if response.is_error:
            raise VoiceProviderError(response.status_code, "", "Recording not available")
        return Recording(
            content=response.content,
            content_type=response.headers.get("content-type", "audio/mpeg"),
        )
