"""
Exceptions for the Agent Flow Service.

Every error carries an OpenAI-style ``error_type`` and ``code`` so it can
be delivered to clients in the same envelope as a successful result.
"""

from typing import Any, Dict, Optional


class FlowEngineError(Exception):
    """
    Base exception for all flow execution errors.

    Attributes:
        message: Human-readable error description
        code: Error code reported to clients
        details: Optional additional error details
    """

    error_type = "server_error"
    default_code = "internal_error"

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.code = code or self.default_code
        self.details = details or {}
        super().__init__(self.message)

    def __str__(self) -> str:
        return self.message

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(message={self.message!r}, code={self.code!r})"

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the OpenAI error object."""
        return {
            "message": self.message,
            "type": self.error_type,
            "code": self.code,
        }


class ConfigurationError(FlowEngineError):
    """
    Raised when a flow definition cannot be executed.

    Missing begin/interface nodes, dangling edges and missing next nodes
    all end up here. Fatal for the turn, never retried.
    """

    error_type = "invalid_request_error"
    default_code = "invalid_flow"


class ValidationError(FlowEngineError):
    """Raised when a request or node input is missing required data."""

    error_type = "invalid_request_error"
    default_code = "missing_parameter"


class NotFoundError(FlowEngineError):
    """Raised when a flow or conversation does not exist."""

    error_type = "invalid_request_error"
    default_code = "not_found"


class ProviderError(FlowEngineError):
    """Base exception for model and retrieval provider failures."""

    error_type = "api_error"
    default_code = "provider_error"


class ModelAPIError(ProviderError):
    """
    Raised when a model provider answers with a non-success status.

    Attributes:
        status_code: HTTP status code from the provider
        response_body: Raw response body
    """

    def __init__(
        self,
        provider: str,
        status_code: int,
        response_body: str = "",
    ):
        self.provider = provider
        self.status_code = status_code
        self.response_body = response_body
        super().__init__(
            f"{provider} API error ({status_code}): {response_body}",
            details={"status_code": status_code},
        )


class RetrievalError(ProviderError):
    """Raised when a knowledge base search fails."""


class InternalError(FlowEngineError):
    """Unexpected failure inside a node handler."""
