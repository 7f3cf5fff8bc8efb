"""Upstream failure classification.

Gemini reports most failures as free-form text, so classification is a
table of substring rules evaluated in order. The first matching rule wins.

    rule           matches (substring)                                 attempt status
    quota          "quota" (any case)                                  429
    invalid_key    "API_KEY_INVALID", "Invalid API key",
                   "API key not valid"                                 401
    not_found      "Not Found"                                         404
    empty          "Empty response"                                    500
    other          anything else                                       500
"""

from enum import Enum

from gemrelay.proxy.errors import AllCredentialsExhausted, UpstreamError


class ErrorCategory(str, Enum):
    QUOTA = "quota"
    INVALID_KEY = "invalid_key"
    NOT_FOUND = "not_found"
    EMPTY_RESPONSE = "empty_response"
    OTHER = "other"


INVALID_KEY_MARKERS = ("API_KEY_INVALID", "Invalid API key", "API key not valid")
KEY_HINT_MARKERS = ("API key", "API_KEY")

_ATTEMPT_STATUS = {
    ErrorCategory.QUOTA: 429,
    ErrorCategory.INVALID_KEY: 401,
    ErrorCategory.NOT_FOUND: 404,
    ErrorCategory.EMPTY_RESPONSE: 500,
    ErrorCategory.OTHER: 500,
}


def classify(message: str) -> ErrorCategory:
    if "quota" in message.lower():
        return ErrorCategory.QUOTA
    if any(marker in message for marker in INVALID_KEY_MARKERS):
        return ErrorCategory.INVALID_KEY
    if "Not Found" in message:
        return ErrorCategory.NOT_FOUND
    if "Empty response" in message:
        return ErrorCategory.EMPTY_RESPONSE
    return ErrorCategory.OTHER


def attempt_status(message: str) -> int:
    """HTTP-style status recorded in the attempt log for a failed attempt."""
    return _ATTEMPT_STATUS[classify(message)]


def is_invalid_key(message: str) -> bool:
    return classify(message) is ErrorCategory.INVALID_KEY


def is_retryable(error: UpstreamError) -> bool:
    """Whether a different credential might succeed where this one failed.

    Only explicit unauthorized errors, and forbidden errors that do not
    mention an API key, are terminal.
    """
    if error.status_code == 401:
        return False
    if error.status_code == 403 and not any(m in error.message for m in KEY_HINT_MARKERS):
        return False
    return True


def exhaustion_error(last_error: UpstreamError | None, tried: int) -> AllCredentialsExhausted:
    """Build the final error once every candidate has failed."""
    message = last_error.message if last_error is not None else ""
    category = classify(message)

    if category is ErrorCategory.QUOTA:
        return AllCredentialsExhausted("All API keys have exceeded quota limits", status_code=429)
    if category is ErrorCategory.INVALID_KEY:
        return AllCredentialsExhausted("All API keys are invalid", status_code=401)
    if category is ErrorCategory.EMPTY_RESPONSE:
        return AllCredentialsExhausted(status_code=502)
    return AllCredentialsExhausted(
        f"All {tried} API keys failed. Last error: {message}", status_code=503
    )
