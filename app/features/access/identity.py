"""
Request identity sources.

An identity source turns an incoming request into the organization id, user
id and role name it acts under. The context resolver only depends on
``IdentitySource.identify``, so the trust mechanism can change without touching
the guards.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

import jwt
from starlette.requests import Request

from app.core import config
from app.core.errors import UnauthorizedError
from app.utils import get_logger


log = get_logger(__name__)


ORGANIZATION_HEADER = "x-organization-id"
USER_HEADER = "x-user-id"
ROLE_HEADER = "x-user-role"


@dataclass(frozen=True)
class Identity:
    organization_id: Optional[str]
    user_id: Optional[str]
    role: Optional[str]


class IdentitySource(ABC):
    """Turns a request into the identity it acts under."""

    @abstractmethod
    def identify(self, request: Request) -> Identity:
        """Raises UnauthorizedError when the request carries no valid identity."""


class TokenIdentitySource(IdentitySource):
    """
    Reads identity from the claims of a signed bearer token.

    The token is verified with the configured secret and algorithm; issuing
    tokens is the job of the authentication service.
    """

    def __init__(
        self,
        secret: str,
        algorithm: str = "HS256",
        organization_claim: str = "org_id",
        user_claim: str = "sub",
        role_claim: str = "role",
    ):
        if not secret:
            raise ValueError("JWT_SECRET must be set to verify identity tokens")
        self.secret = secret
        self.algorithm = algorithm
        self.organization_claim = organization_claim
        self.user_claim = user_claim
        self.role_claim = role_claim

    def identify(self, request: Request) -> Identity:
        auth_header = request.headers.get("Authorization", "")
        scheme, _, token = auth_header.partition(" ")
        if scheme.lower() != "bearer" or not token:
            raise UnauthorizedError()

        try:
            payload = jwt.decode(token, self.secret, algorithms=[self.algorithm])
        except jwt.ExpiredSignatureError:
            raise UnauthorizedError("Token has expired")
        except jwt.InvalidTokenError as e:
            log.info("Rejected identity token: %s", e)
            raise UnauthorizedError("Invalid or expired token")

        return Identity(
            organization_id=_claim(payload, self.organization_claim),
            user_id=_claim(payload, self.user_claim),
            role=_claim(payload, self.role_claim),
        )


class HeaderIdentitySource(IdentitySource):
    """
    Trusts plain request headers for identity.

    Only for local development and tests: anyone can set these headers.
    """

    def identify(self, request: Request) -> Identity:
        return Identity(
            organization_id=request.headers.get(ORGANIZATION_HEADER) or None,
            user_id=request.headers.get(USER_HEADER) or None,
            role=request.headers.get(ROLE_HEADER) or None,
        )


def _claim(payload: dict, name: str) -> Optional[str]:
    value = payload.get(name)
    if value is None or value == "":
        return None
    return str(value)


def build_identity_source() -> IdentitySource:
    """Create the identity source selected by IDENTITY_SOURCE."""
    if config.IDENTITY_SOURCE == "headers":
        log.warning("Trusting identity headers, do not use this in production")
        return HeaderIdentitySource()
    if config.IDENTITY_SOURCE != "token":
        raise ValueError(f"Unknown IDENTITY_SOURCE: {config.IDENTITY_SOURCE!r}")
    return TokenIdentitySource(
        secret=config.JWT_SECRET,
        algorithm=config.JWT_ALGORITHM,
        organization_claim=config.JWT_ORGANIZATION_CLAIM,
        user_claim=config.JWT_USER_CLAIM,
        role_claim=config.JWT_ROLE_CLAIM,
    )


def get_authorization_header(request) -> str:
    """
    Extract authorization header for rate limiting.
    Used with slowapi Limiter.
    """
    auth = request.headers.get("Authorization", "")
    return auth or "anonymous"
