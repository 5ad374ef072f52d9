"""Errors raised while handling a webhook delivery.

Each error carries the HTTP status it is answered with. The processor turns
them into ``{"success": false, "message": ...}`` responses.
"""


class WebhookError(Exception):
    """Base class for rejected webhook deliveries."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class MalformedRequest(WebhookError):
    """Empty or unparsable body, or a required field is missing."""

    status_code = 400


class AuthenticationFailure(WebhookError):
    """Signature missing or not matching the configuration's secret."""

    status_code = 403


class ConfigurationNotFound(WebhookError):
    """No stored configuration matches the delivery."""

    status_code = 404


class ConfigurationIntegrityError(WebhookError):
    """The matched configuration points at no usable project."""

    status_code = 500
