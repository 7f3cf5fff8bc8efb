"""Error taxonomy for the relay.

GatewayError subclasses are caller-facing: they carry the HTTP status and
render as an OpenAI-style error body. UpstreamError describes a single
failed attempt against one credential and is never shown to the caller
directly; the dispatcher turns it into a "try next" signal or a final
GatewayError.
"""

ERROR_MESSAGES: dict[int, tuple[str, str]] = {
    400: ("invalid_request_body", "The request body is malformed or missing required fields."),
    401: ("invalid_api_key", "The access key is missing or invalid."),
    403: ("gemini_api_key_invalid", "An upstream API key was rejected by the provider."),
    404: ("not_found", "The requested resource was not found."),
    429: ("rate_limit_exceeded", "Too many requests. Please slow down and try again later."),
    500: ("internal_error", "The upstream provider could not process the request."),
    502: ("empty_response", "The upstream provider returned an empty response."),
    503: ("no_available_keys", "No upstream API keys are currently available."),
}


class GatewayError(Exception):
    """Caller-facing error with an HTTP status and an OpenAI-style body."""

    status_code = 500

    def __init__(
        self,
        message: str | None = None,
        status_code: int | None = None,
        headers: dict[str, str] | None = None,
    ):
        self.headers = headers
        if status_code is not None:
            self.status_code = status_code
        error_type, default_message = ERROR_MESSAGES.get(
            self.status_code, ("unknown_error", "Unknown error")
        )
        self.error_type = error_type
        self.message = message or default_message
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {
            "error": {
                "message": self.message,
                "type": self.error_type,
                "code": str(self.status_code),
            }
        }


class Unauthorized(GatewayError):
    status_code = 401


class BadRequest(GatewayError):
    status_code = 400


class NotFound(GatewayError):
    status_code = 404


class RateLimited(GatewayError):
    status_code = 429


class NoAvailableCredentials(GatewayError):
    status_code = 503


class UpstreamTerminal(GatewayError):
    """An upstream failure that another credential would not fix (401, or 403 without a key hint)."""


class AllCredentialsExhausted(GatewayError):
    """Every eligible credential was tried and none succeeded."""

    status_code = 503


class UpstreamError(Exception):
    """One attempt against one credential failed."""

    def __init__(self, message: str, status_code: int | None = None):
        self.message = message
        self.status_code = status_code
        super().__init__(message)
