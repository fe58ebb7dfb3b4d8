"""
Error taxonomy for the FlipFlop API.

Every error that can reach the HTTP layer derives from FlipFlopError and
carries its own status code and machine-readable code. main.py renders
them as {"error": message, "code": code}.
"""

from typing import Any, Optional


class FlipFlopError(Exception):
    """Base class for all domain errors."""

    status_code: int = 500
    code: str = "internal_error"

    def __init__(self, message: str, details: Optional[Any] = None):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict:
        body = {"error": self.message, "code": self.code}
        if self.details is not None:
            body["details"] = self.details
        return body


class ValidationError(FlipFlopError):
    """Malformed request body, query or OAuth state."""
    status_code = 400
    code = "validation_error"


class AuthorizationError(FlipFlopError):
    """State/ownership mismatch or insufficient team role."""
    status_code = 403
    code = "forbidden"


class OAuthExchangeError(FlipFlopError):
    """Provider rejected the authorization code or token."""
    status_code = 400
    code = "oauth_exchange_failed"

    def __init__(self, provider: str, provider_error: Any):
        super().__init__(f"{provider} OAuth exchange failed", details=provider_error)
        self.provider = provider
        self.provider_error = provider_error


class DecryptionError(FlipFlopError):
    """Stored credential blob cannot be decrypted with the server key."""
    status_code = 503
    code = "credentials_unusable"


class NotFoundError(FlipFlopError):
    status_code = 404
    code = "not_found"


class ProviderAPIError(FlipFlopError):
    """Rate limit or transient failure from Slack, GitHub, Google or Notion."""
    status_code = 502
    code = "provider_api_error"

    def __init__(self, provider: str, message: str, status: Optional[int] = None):
        super().__init__(f"{provider}: {message}")
        self.provider = provider
        self.status = status


class EmbeddingError(FlipFlopError):
    status_code = 502
    code = "embedding_unavailable"


class LLMError(FlipFlopError):
    status_code = 502
    code = "llm_unavailable"
