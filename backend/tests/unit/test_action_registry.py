"""Unit tests for the proxy action registry."""

import pytest
from fastapi import HTTPException, Request
from fastapi.exceptions import RequestValidationError
from pydantic import BaseModel

from voiceops.api.v1.proxy.registry import ActionContext, ActionRegistry
from voiceops.models.user import UserRole


def make_request(query: str = "", body: bytes = b"") -> Request:
    async def receive() -> dict:
        return {"type": "http.request", "body": body, "more_body": False}

    scope = {
        "type": "http",
        "method": "POST",
        "path": "/api/v1/voice-proxy",
        "query_string": query.encode(),
        "headers": [(b"content-type", b"application/json")],
    }
    return Request(scope, receive)


def make_context(user: dict | None = None, query: str = "", body: bytes = b"") -> ActionContext:
    return ActionContext(request=make_request(query, body), session=None, user=user)


ADMIN = {"id": "user-admin", "role": "admin"}
CLIENT = {"id": "client-a", "role": "client"}


def build_registry() -> ActionRegistry:
    registry = ActionRegistry("test-proxy")

    @registry.action("admin-only", UserRole.ADMIN)
    async def admin_only(ctx: ActionContext) -> dict:
        return {"ran": "admin-only", "user": ctx.user["id"]}

    @registry.action("open", public=True)
    async def open_action(ctx: ActionContext) -> dict:
        return {"ran": "open", "role": ctx.role}

    return registry


class TestRegistration:
    """Tests for action registration."""

    def test_names_are_sorted(self):
        assert build_registry().names == ["admin-only", "open"]

    def test_action_needs_roles_or_public(self):
        """ロール指定なしの非公開アクションは登録できない"""
        registry = ActionRegistry("test-proxy")
        with pytest.raises(ValueError):
            registry.action("nobody")

    def test_duplicate_names_are_rejected(self):
        registry = build_registry()
        with pytest.raises(ValueError):

            @registry.action("open", public=True)
            async def again(ctx: ActionContext) -> None:
                return None


class TestDispatch:
    """Tests for ActionRegistry.dispatch."""

    @pytest.mark.asyncio
    async def test_allowed_role_runs_handler(self):
        result = await build_registry().dispatch("admin-only", make_context(ADMIN))
        assert result == {"ran": "admin-only", "user": "user-admin"}

    @pytest.mark.asyncio
    async def test_unknown_action_is_bad_request(self):
        """未知のアクションは認証より先に400"""
        with pytest.raises(HTTPException) as exc_info:
            await build_registry().dispatch("nope", make_context(None))
        assert exc_info.value.status_code == 400
        assert exc_info.value.detail == "Invalid action"

    @pytest.mark.asyncio
    async def test_missing_action_is_bad_request(self):
        with pytest.raises(HTTPException) as exc_info:
            await build_registry().dispatch(None, make_context(ADMIN))
        assert exc_info.value.status_code == 400

    @pytest.mark.asyncio
    async def test_anonymous_caller_is_unauthorized(self):
        with pytest.raises(HTTPException) as exc_info:
            await build_registry().dispatch("admin-only", make_context(None))
        assert exc_info.value.status_code == 401

    @pytest.mark.asyncio
    async def test_wrong_role_is_forbidden(self):
        """許可されていないロールは403"""
        with pytest.raises(HTTPException) as exc_info:
            await build_registry().dispatch("admin-only", make_context(CLIENT))
        assert exc_info.value.status_code == 403
        assert exc_info.value.detail == "Forbidden"

    @pytest.mark.asyncio
    async def test_public_action_runs_without_user(self):
        result = await build_registry().dispatch("open", make_context(None))
        assert result == {"ran": "open", "role": None}


class TestActionContext:
    """Tests for ActionContext helpers."""

    def test_param(self):
        ctx = make_context(ADMIN, query="call_id=call-1")
        assert ctx.param("call_id") == "call-1"
        assert ctx.param("limit", required=False) is None

    def test_missing_required_param(self):
        with pytest.raises(HTTPException) as exc_info:
            make_context(ADMIN).param("call_id")
        assert exc_info.value.status_code == 400
        assert exc_info.value.detail == "call_id is required"

    @pytest.mark.asyncio
    async def test_body_is_validated(self):
        class Payload(BaseModel):
            lead_id: str

        ctx = make_context(ADMIN, body=b'{"lead_id": "lead-1"}')
        assert (await ctx.body(Payload)).lead_id == "lead-1"

        bad = make_context(ADMIN, body=b'{"other": 1}')
        with pytest.raises(RequestValidationError):
            await bad.body(Payload)
