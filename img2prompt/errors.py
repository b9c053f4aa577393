"""Exception taxonomy. Every error carries a user-facing message."""


class Img2PromptError(Exception):
    """Base class for errors surfaced to the user."""


class ImageValidationError(Img2PromptError):
    pass


class CompressionError(Img2PromptError):
    pass


class ImageReadError(Img2PromptError):
    pass


class ImageLoadError(Img2PromptError):
    pass


class ConfigurationError(Img2PromptError):
    pass


class AnalysisInProgressError(Img2PromptError):
    pass


class NetworkError(Img2PromptError):
    pass


class MalformedResponseError(Img2PromptError):
    pass


class UploadFailedError(Img2PromptError):
    pass


class UpstreamError(Img2PromptError):
    """HTTP-level failure reported by a remote service."""

    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class InvalidImageError(UpstreamError):
    pass


class InvalidKeyError(UpstreamError):
    pass


class AccessDeniedError(UpstreamError):
    pass


class PayloadTooLargeError(UpstreamError):
    pass


class RateLimitedError(UpstreamError):
    pass


class UpstreamServerError(UpstreamError):
    pass


class StorageError(Exception):
    """Durable medium failure. Never escapes StorageManager."""


class StorageQuotaExceededError(StorageError):
    pass
