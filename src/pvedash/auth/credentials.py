"""Credential source for the dashboard session token.

Learn: Tokens issued by the dashboard backend are JWTs. We can't verify
the signature client-side (no secret) and don't need to — the server does
that. We only read the `exp` claim so an expired session counts as
unauthenticated before the server has to reject it. Tokens that aren't
JWTs are treated as opaque and valid while non-empty.
"""

import time
from typing import Callable, Optional, Protocol

import jwt
import structlog

from pvedash.events.bus import EventBus
from pvedash.events.types import Topic
from pvedash.schemas.auth import User

logger = structlog.get_logger()


class CredentialSource(Protocol):
    def is_authenticated(self) -> bool: ...

    def get_token(self) -> Optional[str]: ...


def token_expiry(token: str) -> Optional[float]:
    """Return the JWT `exp` claim as a UNIX timestamp, or None if absent/opaque."""
    try:
        claims = jwt.decode(token, options={"verify_signature": False})
    except jwt.InvalidTokenError:
        return None
    exp = claims.get("exp")
    return float(exp) if isinstance(exp, (int, float)) else None


class TokenStore:
    """In-memory holder for the current session token.

    Publishes Topic.AUTH_CHANGED on the bus (if given) whenever the token
    is set or cleared, so the live channel can follow login/logout. A JWT
    passing its `exp` is announced once, by check_expiry().
    """

    def __init__(
        self,
        token: Optional[str] = None,
        *,
        bus: Optional[EventBus] = None,
        clock: Callable[[], float] = time.time,
    ):
        self._token = token or None
        self._user: Optional[User] = None
        self._bus = bus
        self._clock = clock
        self._expiry_announced = False

    def set_token(self, token: str, user: Optional[User] = None) -> None:
        self._token = token or None
        self._user = user
        self._expiry_announced = False
        logger.info(
            "auth.token_set",
            user=user.username if user else None,
            expires_at=token_expiry(token) if token else None,
        )
        self._announce()

    def clear(self) -> None:
        had_token = self._token is not None
        self._token = None
        self._user = None
        self._expiry_announced = False
        if had_token:
            logger.info("auth.token_cleared")
            self._announce()

    def get_token(self) -> Optional[str]:
        return self._token

    def get_user(self) -> Optional[User]:
        return self._user

    def expires_at(self) -> Optional[float]:
        return token_expiry(self._token) if self._token else None

    def is_authenticated(self) -> bool:
        if not self._token:
            return False
        exp = token_expiry(self._token)
        return exp is None or exp > self._clock()

    def check_expiry(self) -> bool:
        """Announce an expired token on the bus, once per token.

        Returns True only for the call that made the announcement.
        """
        if self._token is None or self._expiry_announced or self.is_authenticated():
            return False
        self._expiry_announced = True
        logger.info("auth.token_expired", expired_at=self.expires_at())
        self._announce()
        return True

    def auth_headers(self) -> dict[str, str]:
        if not self._token:
            return {}
        return {"Authorization": f"Bearer {self._token}"}

    def _announce(self) -> None:
        if self._bus is not None:
            self._bus.publish(
                Topic.AUTH_CHANGED, {"authenticated": self.is_authenticated()}
            )
