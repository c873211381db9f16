"""Error taxonomy shared by the checkout, webhook and reconciliation paths.

Every error carries the HTTP status it maps to; ``server.py`` renders them
as ``{"error": message}``.
"""


class FoodSaveError(Exception):
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(FoodSaveError):
    """Client input violates a constraint. Raised before any persistence."""
    status_code = 400


class SignatureError(FoodSaveError):
    """Webhook payload failed provider signature verification."""
    status_code = 400


class UnauthorizedError(FoodSaveError):
    status_code = 401


class NotFoundError(FoodSaveError):
    status_code = 404


class ConfigurationError(FoodSaveError):
    """A secret or credential needed by one feature is missing."""
    status_code = 500


class GatewayError(FoodSaveError):
    """The payment provider is unreachable or rejected the call."""
    status_code = 502
