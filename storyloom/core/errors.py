"""Domain exceptions for the service layer.

Services raise these instead of ``HTTPException`` so the same code can run
before the response starts (mapped to a JSON error body by the handlers in
``storyloom.main``) and inside a streamed body (turned into an in-band
``error`` event by the generation service).
"""

from __future__ import annotations


class ServiceError(Exception):
    """Base domain exception that carries an HTTP-equivalent status code."""

    default_status_code: int = 500

    def __init__(self, detail: str, status_code: int | None = None):
        super().__init__(detail)
        self.detail = detail
        self.status_code = status_code if status_code is not None else self.default_status_code


class BadRequestError(ServiceError):
    """Malformed or missing request fields (HTTP 400)."""

    default_status_code = 400


class AuthError(ServiceError):
    """Missing or invalid session (HTTP 401)."""

    default_status_code = 401


class NotFoundError(ServiceError):
    """Resource absent or not owned by the caller (HTTP 404)."""

    default_status_code = 404


class ConflictError(ServiceError):
    default_status_code = 409


class QuotaExceededError(ServiceError):
    default_status_code = 429


class ConfigurationError(ServiceError):
    """No usable provider credential, or an unsupported provider (HTTP 500).

    The detail is shown to the caller as-is, so it should tell them what to fix.
    """

    default_status_code = 500


class UpstreamError(ServiceError):
    """Non-success response from the AI provider (HTTP 502). Never retried."""

    default_status_code = 502
