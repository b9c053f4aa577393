"""HostingClient: abstract base for image hosting backends."""
from abc import ABC, abstractmethod

from img2prompt.models import ImageFile, UploadLimits, ValidationResult


class HostingClient(ABC):
    @abstractmethod
    def with_key(self, api_key: str) -> "HostingClient":
        """Return a client bound to ``api_key``; the receiver is left unchanged."""
        ...

    @abstractmethod
    async def upload(
        self, encoded_image: str, name: str | None = None, expiration: int | None = None
    ) -> str:
        """Upload base64 image data and return its public URL. Raises on failure."""
        ...

    @abstractmethod
    async def test_key(self, candidate: str) -> bool: ...

    @abstractmethod
    def upload_limits(self) -> UploadLimits: ...

    @abstractmethod
    def validate_for_upload(self, image: ImageFile) -> ValidationResult: ...
