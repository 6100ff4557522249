"""
Request authentication.

Credential verification belongs to an identity provider; this adapter only
needs "which doctor is calling". An Authenticator turns the presented API key
into a RequestContext, which FastAPI injects into each handler.
"""

import hmac
from typing import Protocol

import structlog
from fastapi import Request

from core.domain.errors import Unauthorized
from core.domain.models import RequestContext

logger = structlog.get_logger(__name__)


class Authenticator(Protocol):
    def authenticate(self, api_key: str | None) -> RequestContext: ...


class StaticKeyAuthenticator:
    """API keys configured up front, each bound to one doctor id."""

    def __init__(self, api_keys: dict[str, str]) -> None:
        self._api_keys = dict(api_keys)
        self.logger = logger.bind(component="static_key_authenticator")

    def authenticate(self, api_key: str | None) -> RequestContext:
        if not api_key:
            raise Unauthorized("missing API key")

        for known_key, doctor_id in self._api_keys.items():
            if hmac.compare_digest(known_key.encode(), api_key.encode()):
                return RequestContext(doctor_id=doctor_id)

        self.logger.warning("invalid_api_key", key_suffix=api_key[-4:])
        raise Unauthorized("invalid API key")


def extract_api_key(request: Request, header_name: str) -> str | None:
    """Read the key from the configured header, falling back to a Bearer token."""
    api_key = request.headers.get(header_name)
    if api_key:
        return api_key.strip()

    authorization = request.headers.get("Authorization", "")
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() == "bearer" and token:
        return token.strip()
    return None
