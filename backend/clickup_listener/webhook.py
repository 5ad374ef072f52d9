"""Handling of one ClickUp webhook delivery, from raw body to response."""

import json
import logging
from dataclasses import dataclass
from typing import Optional

from .auth import authenticate
from .engine import ReconciliationEngine
from .errors import MalformedRequest, WebhookError
from .events import EventCategory, classify_event, normalize_event_name
from .extractor import extract_event

logger = logging.getLogger(__name__)


@dataclass
class WebhookResponse:
    """Response to a delivery.

    Attributes:
        status_code: HTTP status
        success: Whether the delivery was accepted
        message: Optional human-readable message
    """

    status_code: int
    success: bool
    message: Optional[str] = None

    def to_dict(self) -> dict:
        body = {"success": self.success}
        if self.message:
            body["message"] = self.message
        return body


def parse_body(body: bytes) -> dict:
    """Decode a JSON object body.

    Raises:
        MalformedRequest: If the body is empty, not JSON or not an object
    """
    if not body or not body.strip():
        raise MalformedRequest("Empty payload")
    try:
        payload = json.loads(body)
    except (json.JSONDecodeError, UnicodeDecodeError):
        raise MalformedRequest("Invalid JSON")
    if not isinstance(payload, dict):
        raise MalformedRequest("Invalid JSON")
    return payload


class WebhookProcessor:
    """Authenticates, classifies, extracts and reconciles a delivery."""

    def __init__(self, engine: ReconciliationEngine):
        self.engine = engine

    def process(self, body: bytes, signature: Optional[str]) -> WebhookResponse:
        """Handle a delivery. Never raises."""
        try:
            return self._process(body, signature)
        except WebhookError as e:
            logger.warning(f"ClickUp webhook rejected ({e.status_code}): {e.message}")
            return WebhookResponse(e.status_code, False, e.message)
        except Exception:
            logger.exception("ClickUp webhook failed")
            return WebhookResponse(500, False, "Internal error")

    def _process(self, body: bytes, signature: Optional[str]) -> WebhookResponse:
        payload = parse_body(body)

        name = normalize_event_name(payload.get("event"))
        category = classify_event(name)
        if category is EventCategory.IGNORED:
            logger.info(f"Ignoring ClickUp event {name}")
            return WebhookResponse(200, True, "Event ignored")

        logger.debug(f"Incoming ClickUp webhook payload: {body!r}")

        configurations = self.engine.mappings.list_configurations()
        config = authenticate(body, payload, signature, configurations)

        if category is EventCategory.COMMENT:
            event = extract_event(payload, name, category)
            result = self.engine.reconcile_comment(config, event)
        else:
            event = extract_event(payload, name, category, self.engine.known_columns())
            result = self.engine.reconcile_task(config, event)

        return WebhookResponse(200, True, result.message)
