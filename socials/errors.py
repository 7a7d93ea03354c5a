# socials/errors.py
from __future__ import annotations


class PostingError(Exception):
    """Base class for every failure the posting pipeline can report.

    kind:        short tag used in SubmissionResult.failure ("network", "auth", ...)
    detail:      human readable explanation, safe to show in a UI
    status_code: HTTP status when the failure came from a response
    """

    kind = "unknown"

    def __init__(self, detail: str = "", status_code: int | None = None):
        self.detail = detail
        self.status_code = status_code
        super().__init__(detail or self.kind)


class NetworkError(PostingError):
    """No response was received (DNS, connection, timeout)."""

    kind = "network"


class AuthError(PostingError):
    kind = "auth"

    REJECTED = "rejected"
    NO_SESSION = "no_session"
    REQUIRED = "required"
    MALFORMED_RESPONSE = "malformed_response"

    def __init__(self, reason: str, detail: str = "", status_code: int | None = None):
        self.reason = reason
        super().__init__(detail or reason, status_code=status_code)


class UploadError(PostingError):
    """Blob upload failed (non-2xx, undecodable body, or the image could not be encoded)."""

    kind = "upload"


class PostError(PostingError):
    kind = "post"


class DecodingError(PostingError):
    """2xx response that is missing a required field."""

    kind = "decoding"
