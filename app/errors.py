"""
Error taxonomy for the media gateway.

Every request-path failure is a GatewayError carrying the HTTP status it
should be surfaced with. The app registers one handler that renders these
with make_error_response(); nothing here is retried internally.
"""
from typing import Optional

from fastapi.responses import JSONResponse


class GatewayError(Exception):
    """Base class for errors surfaced to API callers."""
    status_code: int = 500
    error_type: str = "internal_error"

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class ConfigError(GatewayError):
    """Invalid startup configuration. Fatal: the process must not serve."""
    error_type = "config_error"


class PaymentRejected(GatewayError):
    """Payment missing, malformed, invalid, or not settled.

    Carries the PaymentOutcome so the dispatcher can render the x402 body.
    """
    status_code = 402
    error_type = "payment_required"

    def __init__(self, outcome):
        self.outcome = outcome
        self.status_code = outcome.status_code
        if outcome.status_code == 400:
            self.error_type = "invalid_payment"
        super().__init__(outcome.reason or "Payment required")


class UpstreamError(GatewayError):
    """Payment facilitator unreachable or returned a non-2xx response."""
    status_code = 502
    error_type = "facilitator_error"


class ProviderError(GatewayError):
    """Generation provider failed or returned an unusable response."""
    error_type = "provider_error"

    def __init__(self, message: str, status: Optional[int] = None, body: Optional[str] = None):
        self.status = status
        self.body = body
        super().__init__(message)


class DownloadError(GatewayError):
    """Fetching the provider's result bytes failed."""
    error_type = "download_error"


class TranscodeError(GatewayError):
    """External transcoding tool failed."""
    error_type = "transcode_error"

    def __init__(self, message: str, stderr: str = ""):
        self.stderr = stderr
        super().__init__(message)


class StorageError(GatewayError):
    """Object store or relational store operation failed."""
    error_type = "storage_error"


def make_error_response(
    status_code: int,
    error_type: str,
    message: str,
    request_id: str = None,
    category: str = None,
    recovery: dict = None,
) -> JSONResponse:
    """
    Create an agent-friendly error response with structured metadata.

    Categories:
    - permanent: Won't succeed without changes (bad quality, bad payment encoding)
    - upstream: Provider or facilitator issue; retrying the whole request may succeed
    - transient: Retry may succeed as-is
    """
    if category is None:
        if error_type in ("invalid_quality", "invalid_payment", "not_found", "config_error"):
            category = "permanent"
        elif error_type in ("provider_error", "facilitator_error", "download_error"):
            category = "upstream"
        elif error_type in ("storage_error", "transcode_error"):
            category = "transient"
        else:
            category = "unknown"

    if recovery is None and category in ("upstream", "transient"):
        recovery = {
            "action": "retry_with_backoff",
            "delay_ms": 1000,
            "note": "Retrying re-triggers payment",
        }

    error_body = {
        "error": {
            "code": error_type.upper(),
            "message": message,
            "type": error_type,
            "category": category,
        }
    }

    if request_id:
        error_body["error"]["request_id"] = request_id
    if recovery:
        error_body["error"]["recovery"] = recovery

    return JSONResponse(status_code=status_code, content=error_body)
