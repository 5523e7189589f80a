"""
Error types raised by the media job service.

All errors inherit from MediaJobError and carry the HTTP status the web
layer answers with. Messages are meant to be shown to the client as-is.
"""


class MediaJobError(Exception):
    """Base exception for every service failure."""

    status_code = 400

    def __init__(self, message, context=None):
        self.message = message
        self.context = context or {}
        super().__init__(message)

    def add_context(self, operation, **context):
        """Prefix the message with the failing operation and record context"""
        self.message = f"{operation} failed: {self.message}"
        self.args = (self.message,)
        self.context.update(context)
        self.context["operation"] = operation
        return self


class ValidationError(MediaJobError):
    """Bad or missing parameters, detected before any external call."""


class InvalidParameterError(ValidationError):
    pass


class UnsupportedTypeError(ValidationError):
    pass


class SizeExceededError(ValidationError):
    pass


class DurationExceededError(ValidationError):
    def __init__(self, duration, limit):
        self.duration = duration
        self.limit = limit
        super().__init__(
            f"Media duration {duration:.1f}s exceeds the {limit:.0f}s limit",
            {"duration": duration, "limit": limit},
        )


class NotFoundError(MediaJobError):
    status_code = 404


class EngineError(MediaJobError):
    """The external media engine failed to probe or transcode."""


class ProbeError(EngineError):
    pass


class TranscodeError(EngineError):
    pass


class FetchError(MediaJobError):
    """Remote download failed."""


class InvalidUrlError(FetchError):
    pass


class InvalidAssetError(FetchError):
    pass


class StoreError(MediaJobError):
    """The asset store could not move a file into place."""


class StoreWriteError(StoreError):
    pass
