"""Shared builders for webhook requests and ES256 tokens."""
from __future__ import annotations

import base64
import json
import time

import jwt
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec

FIC_ISSUER = "https://api-v2.fattureincloud.it"
CLIENT_CREATE = "it.fattureincloud.webhooks.entities.clients.create"


def binary_headers(
    event_type: str | None = CLIENT_CREATE,
    ce_id: str = "evt-1",
    subject: str = "company:1550348",
    time_: str = "2026-10-19T09:30:00Z",
    **extra: str,
) -> dict[str, str]:
    headers = {
        "content-type": "application/json",
        "ce-id": ce_id,
        "ce-source": FIC_ISSUER,
        "ce-specversion": "1.0",
        "ce-subject": subject,
        "ce-time": time_,
    }
    if event_type is not None:
        headers["ce-type"] = event_type
    headers.update(extra)
    return headers


def ids_body(*ids) -> bytes:
    return json.dumps({"data": {"ids": list(ids)}}).encode()


class SigningKey:
    """ES256 key pair; the public half is exported the way FIC distributes it."""

    def __init__(self):
        self.private_key = ec.generate_private_key(ec.SECP256R1())
        pem = self.private_key.public_key().public_bytes(
            serialization.Encoding.PEM,
            serialization.PublicFormat.SubjectPublicKeyInfo,
        )
        self.public_pem = pem.decode()
        self.public_b64 = base64.b64encode(pem).decode()

    def token(self, **claims) -> str:
        payload = {"iss": FIC_ISSUER, "iat": int(time.time()), "exp": int(time.time()) + 300}
        payload.update(claims)
        payload = {k: v for k, v in payload.items() if v is not None}
        return jwt.encode(payload, self.private_key, algorithm="ES256")
