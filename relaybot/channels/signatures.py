"""Webhook authenticity checks."""

from __future__ import annotations

import hashlib
import hmac
from collections.abc import Mapping

_DIGESTS = {"sha256": hashlib.sha256, "sha1": hashlib.sha1}


def _as_bytes(body: bytes | str) -> bytes:
    return body.encode("utf-8") if isinstance(body, str) else body


def _matches(body: bytes | str, signature: str | None, app_secret: str, scheme: str) -> bool:
    if not signature or not app_secret:
        return False
    prefix = f"{scheme}="
    if not signature.startswith(prefix):
        return False
    expected = hmac.new(app_secret.encode("utf-8"), _as_bytes(body), _DIGESTS[scheme]).hexdigest()
    provided = signature[len(prefix):].strip().lower()
    return hmac.compare_digest(expected.encode("ascii"), provided.encode("utf-8"))


def verify_whatsapp_signature(body: bytes | str, signature: str | None, app_secret: str) -> bool:
    """Check an `X-Hub-Signature-256: sha256=<hex>` header."""
    return _matches(body, signature, app_secret, "sha256")


def verify_messenger_signature(body: bytes | str, signature: str | None, app_secret: str) -> bool:
    """
    Check a Messenger webhook signature.

    Accepts `X-Hub-Signature-256: sha256=<hex>` and the legacy
    `X-Hub-Signature: sha1=<hex>` form.
    """
    if signature and signature.startswith("sha1="):
        return _matches(body, signature, app_secret, "sha1")
    return _matches(body, signature, app_secret, "sha256")


def verify_telegram_secret(header_value: str | None, secret_token: str) -> bool:
    """Check `X-Telegram-Bot-Api-Secret-Token` against the token given to setWebhook."""
    if not header_value or not secret_token:
        return False
    return hmac.compare_digest(header_value.encode("utf-8"), secret_token.encode("utf-8"))


def verify_request(
    platform: str, body: bytes, headers: Mapping[str, str], app_secret: str
) -> bool:
    """
    Authenticate a webhook request for `platform`.

    `headers` keys must be lower-case. An empty `app_secret` disables the check.
    """
    if not app_secret:
        return True
    if platform == "whatsapp":
        return verify_whatsapp_signature(body, headers.get("x-hub-signature-256"), app_secret)
    if platform == "messenger":
        signature = headers.get("x-hub-signature-256") or headers.get("x-hub-signature")
        return verify_messenger_signature(body, signature, app_secret)
    if platform == "telegram":
        return verify_telegram_secret(headers.get("x-telegram-bot-api-secret-token"), app_secret)
    return False


def verify_subscription(params: Mapping[str, str], expected_token: str) -> str | None:
    """Return `hub.challenge` for a valid subscribe handshake, else None."""
    if params.get("hub.mode") != "subscribe":
        return None
    token = params.get("hub.verify_token") or ""
    if not expected_token or not hmac.compare_digest(
        token.encode("utf-8"), expected_token.encode("utf-8")
    ):
        return None
    return params.get("hub.challenge")
