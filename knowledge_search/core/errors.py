"""
Error taxonomy for the retrieval pipeline.
Every error carries the HTTP status it maps to at the API boundary.
"""


class RetrievalError(Exception):
    """Base class for all retrieval pipeline errors."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(RetrievalError):
    """Missing or malformed request input. Never retried."""

    status_code = 400


class AuthError(RetrievalError):
    """Missing bearer credential on a substantive call. Never retried."""

    status_code = 401


class ConfigurationError(RetrievalError):
    """A required provider credential or setting is absent. Fatal at start-up."""

    status_code = 500


class UpstreamUnavailable(RetrievalError):
    """Embedding provider or similarity index unreachable or non-success."""

    status_code = 500


class UpstreamMalformed(RetrievalError):
    """Upstream answered with success but not the expected shape."""

    status_code = 500


class DeadlineExceeded(UpstreamUnavailable):
    """The request deadline expired before an outbound leg completed."""

    status_code = 504


class PartialFailure(RetrievalError):
    """Detail fetch failed. Caught by the hydrator, never returned to callers."""

    status_code = 500
