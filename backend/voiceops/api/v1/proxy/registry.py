"""Action registry shared by the action-routed proxies."""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, TypeVar

import structlog
from fastapi import HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from pydantic import BaseModel, ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from voiceops.models.user import UserRole, role_of
from voiceops.services.voice_protocol import VoiceProviderProtocol

logger = structlog.get_logger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)


@dataclass
class ActionContext:
    """Everything a proxy action handler may use."""

    request: Request
    session: AsyncSession
    user: dict[str, Any] | None
    provider: VoiceProviderProtocol | None = None

    @property
    def role(self) -> UserRole | None:
        return role_of(self.user)

    def param(self, name: str, required: bool = True) -> str | None:
        """Query parameter, 400 when a required one is missing."""
        value = self.request.query_params.get(name)
        if required and not value:
            raise HTTPException(status_code=400, detail=f"{name} is required")
        return value

    async def body(self, model: type[ModelT]) -> ModelT:
        """Validate the JSON body against ``model`` (422 on failure)."""
        try:
            raw = await self.request.json()
        except ValueError:
            raw = {}
        try:
            return model.model_validate(raw)
        except ValidationError as e:
            raise RequestValidationError(e.errors()) from e


Handler = Callable[[ActionContext], Awaitable[Any]]


@dataclass(frozen=True)
class Action:
    """A named handler and the roles allowed to call it (None means public)."""

    name: str
    handler: Handler
    roles: frozenset[UserRole] | None

    def allows(self, user: dict[str, Any] | None) -> bool:
        if self.roles is None:
            return True
        return role_of(user) in self.roles


class ActionRegistry:
    """
    Named proxy actions behind one endpoint.

    Handlers register with the roles allowed to run them. ``dispatch`` checks
    authentication and role before a handler runs, so a handler never sees a
    caller it was not written for.
    """

    def __init__(self, name: str):
        self.name = name
        self._actions: dict[str, Action] = {}

    def action(
        self, name: str, *roles: UserRole, public: bool = False
    ) -> Callable[[Handler], Handler]:
        """Register the decorated coroutine as ``name``."""
        if not roles and not public:
            raise ValueError(f"Action {name} needs roles or public=True")

        def decorator(handler: Handler) -> Handler:
            if name in self._actions:
                raise ValueError(f"Action {name} is already registered")
            self._actions[name] = Action(
                name=name,
                handler=handler,
                roles=None if public else frozenset(roles),
            )
            return handler

        return decorator

    def get(self, name: str | None) -> Action | None:
        if not name:
            return None
        return self._actions.get(name)

    @property
    def names(self) -> list[str]:
        return sorted(self._actions)

    async def dispatch(self, name: str | None, context: ActionContext) -> Any:
        """
        Run an action for the caller in ``context``.

        Raises:
            HTTPException: 400 for an unknown action, 401 without a valid
                token, 403 for a role the action does not allow
        """
        action = self.get(name)
        if action is None:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid action")

        if action.roles is not None:
            if context.user is None:
                raise HTTPException(
                    status_code=status.HTTP_401_UNAUTHORIZED,
                    detail="Could not validate credentials",
                    headers={"WWW-Authenticate": "Bearer"},
                )
            if not action.allows(context.user):
                logger.info(
                    "proxy_action_denied",
                    proxy=self.name,
                    action=name,
                    user_id=context.user["id"],
                    role=context.user.get("role"),
                )
                raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Forbidden")

        logger.debug("proxy_action", proxy=self.name, action=name)
        return await action.handler(context)
