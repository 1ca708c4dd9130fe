"""Error kinds raised by the extraction and import pipeline.

Every error carries a human-readable message; the HTTP layer renders it as
``{"error": message}``. Nothing here is retried automatically.
"""


class TrackerError(Exception):
    """Base class for pipeline errors."""


class AuthenticationError(TrackerError):
    """Missing or invalid bearer token, or no usable Gmail session."""


class ExternalServiceError(TrackerError):
    """A mail, OAuth or generation API call failed."""

    def __init__(self, message, status_code=None):
        super().__init__(message)
        self.status_code = status_code


class MalformedResponseError(TrackerError):
    """The model answered with text that is not a usable JSON array."""


class ConfigurationError(TrackerError):
    """A required API key or secret is not configured."""


class StorageError(TrackerError):
    """An insert or delete against the backing store failed."""
