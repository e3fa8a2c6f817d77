"""Webhook request authentication (HMAC-SHA256 signature and ES256 JWT).

The verification functions are pure: no I/O, no settings lookups. The
``WebhookVerifier`` applies them according to an explicit
``WebhookSecurityConfig``; only the app boundary builds that config from
settings.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import logging
from dataclasses import dataclass
from typing import Any, Mapping

import jwt

from ficsync.core.exceptions import (
    InvalidSignature,
    InvalidToken,
    MissingAuthHeader,
    MissingSignature,
)

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "x-signature"
SIGNATURE_PREFIX = "sha256="
FIC_ISSUER = "https://api-v2.fattureincloud.it"
JWT_ALGORITHM = "ES256"


@dataclass(frozen=True)
class WebhookSecurityConfig:
    verify_hmac: bool = False
    verify_jwt: bool = True
    public_key: str = ""  # base64-encoded PEM, or PEM text
    issuer: str = FIC_ISSUER
    audience: str | None = None

    @classmethod
    def from_settings(cls, settings) -> "WebhookSecurityConfig":
        return cls(
            verify_hmac=settings.FIC_WEBHOOK_VERIFY_HMAC,
            verify_jwt=settings.FIC_WEBHOOK_VERIFY_JWT,
            public_key=settings.FIC_WEBHOOK_PUBLIC_KEY,
            issuer=settings.FIC_WEBHOOK_ISSUER or FIC_ISSUER,
            audience=settings.FIC_WEBHOOK_AUDIENCE or None,
        )


# =============================================================================
# HMAC
# =============================================================================


def compute_signature(secret: str, body: bytes) -> str:
    """Hex HMAC-SHA256 of the raw body."""
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


def verify_hmac_signature(secret: str, body: bytes, signature: str | None) -> bool:
    """
    Check a signature header value against the raw body.

    Accepts the bare hex digest or a ``sha256=`` prefixed one.
    """
    if not signature:
        raise MissingSignature()
    provided = signature.strip()
    if provided.lower().startswith(SIGNATURE_PREFIX):
        provided = provided[len(SIGNATURE_PREFIX) :]
    if not secret:
        raise InvalidSignature()
    expected = compute_signature(secret, body)
    if not hmac.compare_digest(expected, provided.lower()):
        raise InvalidSignature()
    return True


# =============================================================================
# JWT
# =============================================================================


def load_public_key(value: str) -> str:
    """Decode the configured key. FIC distributes it as base64 of a PEM file."""
    value = (value or "").strip()
    if not value:
        raise InvalidToken()
    if value.startswith("-----BEGIN"):
        return value
    try:
        return base64.b64decode(value, validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError):
        logger.error("FIC webhook public key is not valid base64")
        raise InvalidToken()


def extract_bearer_token(header: str | None) -> str:
    if not header:
        raise MissingAuthHeader()
    scheme, _, token = header.strip().partition(" ")
    token = token.strip()
    if scheme.lower() != "bearer" or not token:
        raise InvalidToken()
    return token


def verify_jwt_token(
    token: str,
    public_key: str,
    *,
    issuer: str = FIC_ISSUER,
    audience: str | None = None,
    expected_jti: str | None = None,
    expected_subject: str | None = None,
) -> dict[str, Any]:
    """
    Verify signature and claims; returns the decoded claims.

    ``exp`` is enforced only when present. ``jti``/``sub`` are compared to
    the CloudEvents id/subject when the request carries them.
    """
    key = load_public_key(public_key)
    try:
        claims = jwt.decode(
            token,
            key,
            algorithms=[JWT_ALGORITHM],
            issuer=issuer,
            audience=audience,
            options={"require": ["iss"], "verify_aud": bool(audience)},
        )
    except (jwt.PyJWTError, ValueError) as exc:
        logger.warning("FIC webhook JWT rejected: %s", type(exc).__name__)
        raise InvalidToken()

    if expected_jti and claims.get("jti") != expected_jti:
        logger.warning("FIC webhook JWT jti does not match ce-id")
        raise InvalidToken()
    if expected_subject and claims.get("sub") != expected_subject:
        logger.warning("FIC webhook JWT sub does not match ce-subject")
        raise InvalidToken()
    return claims


class WebhookVerifier:
    """Applies the enabled verification layers to one request."""

    def __init__(self, config: WebhookSecurityConfig):
        self.config = config

    def verify_signature(self, secret: str | None, body: bytes, headers: Mapping[str, str]) -> None:
        if not self.config.verify_hmac:
            return
        verify_hmac_signature(secret or "", body, headers.get(SIGNATURE_HEADER))

    def verify_token(
        self,
        headers: Mapping[str, str],
        *,
        ce_id: str | None = None,
        subject: str | None = None,
    ) -> dict[str, Any] | None:
        if not self.config.verify_jwt:
            return None
        token = extract_bearer_token(headers.get("authorization"))
        return verify_jwt_token(
            token,
            self.config.public_key,
            issuer=self.config.issuer,
            audience=self.config.audience,
            expected_jti=ce_id,
            expected_subject=subject,
        )
