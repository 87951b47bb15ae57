"""
RequestGuard: Authenticated User Access
=========================================

What:  The user object the pipeline reads (id, name, email, locale, timezone)
       and a Starlette authentication backend that picks it up from the
       session.
Why:   Login itself (passwords, passkeys) belongs to the host application.
       After a successful login it stores a user payload under
       session["user"]; everything here only reads it.

Session payload shape:
    {"id": 42, "name": "Ada", "email": "ada@example.com",
     "locale": "pt_BR", "timezone": "America/Sao_Paulo"}
"""

from typing import Any, Dict, Optional, Tuple

from starlette.authentication import (
    AuthCredentials,
    AuthenticationBackend,
    BaseUser,
)
from starlette.requests import HTTPConnection, Request


class AppUser(BaseUser):
    def __init__(
        self,
        id: Any,
        name: Optional[str] = None,
        email: Optional[str] = None,
        locale: Optional[str] = None,
        timezone: Optional[str] = None,
    ):
        self.id = id
        self.name = name
        self.email = email
        self.locale = locale
        self.timezone = timezone

    @property
    def is_authenticated(self) -> bool:
        return True

    @property
    def display_name(self) -> str:
        return self.name or str(self.id)

    @property
    def identity(self) -> str:
        return str(self.id)

    def only(self, *fields: str) -> Dict[str, Any]:
        """Subset of identity fields, e.g. for error report context."""
        return {field: getattr(self, field, None) for field in fields}

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "AppUser":
        return cls(
            id=payload["id"],
            name=payload.get("name"),
            email=payload.get("email"),
            locale=payload.get("locale"),
            timezone=payload.get("timezone"),
        )


class SessionUserBackend(AuthenticationBackend):
    """Authenticates the request from the `user` payload stored in the session."""

    session_key = "user"

    async def authenticate(
        self, conn: HTTPConnection
    ) -> Optional[Tuple[AuthCredentials, BaseUser]]:
        if "session" not in conn.scope:
            return None
        payload = conn.session.get(self.session_key)
        if not payload or "id" not in payload:
            return None
        return AuthCredentials(["authenticated"]), AppUser.from_payload(payload)


def current_user(request: Request) -> Optional[AppUser]:
    """
    The authenticated user, or None.

    Reads scope["user"] directly: `request.user` asserts when no
    AuthenticationMiddleware is installed.
    """
    user = request.scope.get("user")
    if user is not None and getattr(user, "is_authenticated", False):
        return user
    return None
