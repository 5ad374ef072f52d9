"""Webhook signature verification and configuration matching."""

import hashlib
import hmac
import logging
from typing import Optional

from .errors import AuthenticationFailure, ConfigurationNotFound
from .stores.base import Configuration

logger = logging.getLogger(__name__)

SIGNATURE_PREFIX = "sha256="


def strip_signature_prefix(signature: Optional[str]) -> str:
    """Return the header value without its ``sha256=`` prefix."""
    signature = (signature or "").strip()
    if signature.startswith(SIGNATURE_PREFIX):
        return signature[len(SIGNATURE_PREFIX):]
    return signature


def compute_signature(body: bytes, secret: str) -> str:
    """HMAC-SHA256 hex digest of the raw body."""
    return hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


def verify_signature(body: bytes, signature: str, secret: str) -> bool:
    """Check a ClickUp signature against a secret.

    Older configurations were set up with the secret itself pasted as the
    signature, so a signature equal to the secret is also accepted.
    """
    if not secret or not signature:
        return False
    expected = compute_signature(body, secret)
    matches_digest = hmac.compare_digest(expected.encode(), signature.encode())
    matches_secret = hmac.compare_digest(secret.encode(), signature.encode())
    return matches_digest or matches_secret


def match_configuration(
    body: bytes,
    payload: dict,
    signature: str,
    configurations: list[Configuration],
) -> Optional[Configuration]:
    """Find the configuration a delivery belongs to.

    Configurations with a secret are tried against the signature first, in
    listing order. Without a signature match the payload's ``webhook_id`` is
    compared against the stored webhook ids.
    """
    if signature:
        for config in configurations:
            if config.hook_secret and verify_signature(body, signature, config.hook_secret):
                return config

    webhook_id = payload.get("webhook_id")
    webhook_id = "" if webhook_id is None else str(webhook_id)
    if webhook_id:
        for config in configurations:
            if (config.webhook_id or "") == webhook_id:
                return config

    return None


def authenticate(
    body: bytes,
    payload: dict,
    signature: Optional[str],
    configurations: list[Configuration],
) -> Configuration:
    """Return the matching configuration or raise.

    A configuration with a secret always requires a valid signature, even
    when it was matched through its webhook id.

    Raises:
        ConfigurationNotFound: If no configuration matches
        AuthenticationFailure: If the signature is missing or wrong
    """
    signature = strip_signature_prefix(signature)
    config = match_configuration(body, payload, signature, configurations)
    if config is None:
        raise ConfigurationNotFound("No matching ClickUp configuration found")

    if config.hook_secret:
        if not signature:
            raise AuthenticationFailure("Missing signature")
        if not verify_signature(body, signature, config.hook_secret):
            raise AuthenticationFailure("Signature mismatch")

    return config
