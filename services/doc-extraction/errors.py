"""Error taxonomy for the extraction pipeline.

Every failure that reaches the HTTP layer is an ``ExtractionError``. The
class carries the status code and retry hint so ``main.py`` can map it to a
response without inspecting messages.
"""

PREVIEW_LENGTH = 200


def make_preview(text: str, length: int = PREVIEW_LENGTH) -> str:
    """Return the first ``length`` characters of ``text``, marking truncation."""
    if not text:
        return ""
    if len(text) > length:
        return text[:length] + "..."
    return text


class ExtractionError(Exception):
    """Base class for failures of a single extraction request."""

    kind = "extraction_error"
    status_code = 500
    retryable = False

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_content(self) -> dict:
        return {
            "error": self.kind,
            "detail": self.message,
            "retryable": self.retryable,
        }


class ModelUnavailable(ExtractionError):
    """Model could not be reached, rejected the key, or returned an unusable reply."""

    kind = "model_unavailable"
    status_code = 503


class QuotaExceeded(ExtractionError):
    """Model quota is exhausted. The caller may retry later."""

    kind = "quota_exceeded"
    status_code = 429
    retryable = True


class RateLimited(ExtractionError):
    """Model rejected the call due to request rate. The caller should back off."""

    kind = "rate_limited"
    status_code = 429
    retryable = True


class ModelTimeout(ExtractionError):
    """Model call timed out (retryable; never reported as a parse failure)."""

    kind = "model_timeout"
    status_code = 504
    retryable = True


class ParseFailure(ExtractionError):
    """The model reply could not be turned into any structure."""

    kind = "parse_failure"
    status_code = 422

    def __init__(self, message: str, raw: str = ""):
        super().__init__(message)
        self.preview = make_preview(raw)

    def to_content(self) -> dict:
        content = super().to_content()
        content["preview"] = self.preview
        content["suggestion"] = (
            "The model reply was not in the expected JSON format. "
            "Try making the instruction more specific."
        )
        return content


class InvalidRequest(ExtractionError):
    kind = "invalid_request"
    status_code = 400


class ResultNotFound(ExtractionError):
    kind = "result_not_found"
    status_code = 404


class DocumentBusy(ExtractionError):
    """Another extraction for the same document id is still running."""

    kind = "document_busy"
    status_code = 409
    retryable = True
