"""
Token verification capability consumed by every route layer.

verify(token) -> Claims(user_id, roles, session_id). JWT crypto is
delegated to python-jose; dev mode trusts identity headers instead.
"""
from __future__ import annotations

import hmac
from dataclasses import dataclass, field
from typing import Protocol

import structlog
from fastapi import Request
from jose import JWTError, jwt

from services.shared.config import env_bool, env_str
from services.shared.errors import ForbiddenError, UnauthorizedError

logger = structlog.get_logger(__name__)

DEFAULT_DEV_USER_HEADER = "x-user-id"


@dataclass(frozen=True)
class Claims:
    user_id: str
    roles: tuple[str, ...] = field(default_factory=tuple)
    session_id: str | None = None

    def has_role(self, role: str) -> bool:
        return role in self.roles


class TokenVerifier(Protocol):
    def verify(self, token: str) -> Claims: ...


class JwtTokenVerifier:
    def __init__(
        self,
        secret: str,
        *,
        algorithm: str = "HS256",
        audience: str | None = None,
        issuer: str | None = None,
    ) -> None:
        self._secret = secret
        self._algorithm = algorithm
        self._audience = audience
        self._issuer = issuer

    def verify(self, token: str) -> Claims:
        try:
            payload = jwt.decode(
                token,
                self._secret,
                algorithms=[self._algorithm],
                audience=self._audience,
                issuer=self._issuer,
                options={"verify_aud": self._audience is not None},
            )
        except JWTError as exc:
            logger.info("jwt_rejected", error=str(exc))
            raise UnauthorizedError("Invalid or expired token") from exc

        user_id = payload.get("sub")
        if not user_id:
            raise UnauthorizedError("Token has no subject")
        roles = payload.get("roles") or []
        if isinstance(roles, str):
            roles = [roles]
        return Claims(
            user_id=str(user_id),
            roles=tuple(str(role) for role in roles),
            session_id=payload.get("sid") or payload.get("session_id"),
        )


class DevHeaderVerifier:
    """Development verifier: the bearer token is the user id."""

    def verify(self, token: str) -> Claims:
        token = token.strip()
        if not token:
            raise UnauthorizedError("Empty token")
        return Claims(user_id=token, roles=("customer",), session_id=None)


class Authenticator:
    """Resolves request claims from a bearer token, or from dev headers."""

    def __init__(
        self,
        verifier: TokenVerifier,
        *,
        dev_mode: bool = False,
        dev_user_header: str = DEFAULT_DEV_USER_HEADER,
    ) -> None:
        self._verifier = verifier
        self._dev_mode = dev_mode
        self._dev_user_header = dev_user_header.lower()

    def claims_from_request(self, request: Request) -> Claims | None:
        authorization = request.headers.get("authorization", "")
        scheme, _, token = authorization.partition(" ")
        if scheme.lower() == "bearer" and token:
            return self._verifier.verify(token)

        if self._dev_mode:
            user_id = request.headers.get(self._dev_user_header)
            if user_id:
                roles = _split(request.headers.get(f"{self._dev_user_header}-roles"))
                return Claims(
                    user_id=user_id,
                    roles=tuple(roles) or ("customer",),
                    session_id=request.headers.get(f"{self._dev_user_header}-session"),
                )
        return None

    async def optional(self, request: Request) -> Claims | None:
        return self.claims_from_request(request)

    async def required(self, request: Request) -> Claims:
        claims = self.claims_from_request(request)
        if claims is None:
            raise UnauthorizedError("Authentication required")
        return claims

    def require_role(self, *roles: str):
        """Dependency requiring any one of ``roles``."""

        async def dependency(request: Request) -> Claims:
            claims = await self.required(request)
            if not any(claims.has_role(role) for role in roles):
                raise ForbiddenError(f"One of roles {list(roles)} required")
            return claims

        return dependency


def load_authenticator() -> Authenticator:
    secret = env_str("AUTH_JWT_SECRET", "")
    dev_mode = env_bool("AUTH_DEV_MODE", not secret)
    verifier: TokenVerifier
    if secret:
        verifier = JwtTokenVerifier(
            secret,
            algorithm=env_str("AUTH_JWT_ALGORITHM", "HS256"),
            audience=env_str("AUTH_JWT_AUDIENCE", "") or None,
            issuer=env_str("AUTH_JWT_ISSUER", "") or None,
        )
    else:
        verifier = DevHeaderVerifier()
    return Authenticator(
        verifier,
        dev_mode=dev_mode,
        dev_user_header=env_str("AUTH_DEV_USER_HEADER", DEFAULT_DEV_USER_HEADER),
    )


def require_internal_secret(expected: str):
    """Dependency guarding service-to-service endpoints."""

    async def dependency(request: Request) -> None:
        provided = request.headers.get("x-internal-service-secret", "")
        if not provided or not hmac.compare_digest(provided, expected):
            raise UnauthorizedError("Invalid internal service secret")

    return dependency


def _split(raw: str | None) -> list[str]:
    if not raw:
        return []
    return [part.strip() for part in raw.split(",") if part.strip()]
