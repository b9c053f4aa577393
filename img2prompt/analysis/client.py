"""AnalysisClient: abstract base for image-to-prompt backends."""
from abc import ABC, abstractmethod

from img2prompt.models import ImageFile


class AnalysisClient(ABC):
    @abstractmethod
    def with_key(self, api_key: str) -> "AnalysisClient":
        """Return a client bound to ``api_key``; the receiver is left unchanged."""
        ...

    @abstractmethod
    async def analyze(
        self,
        image: str | ImageFile,
        model: str | None = None,
        language: str | None = None,
        custom_instruction: str | None = None,
    ) -> str:
        """Describe an image given by URL or bytes as a prompt. Raises on failure."""
        ...

    @abstractmethod
    async def test_key(self, candidate: str) -> bool: ...

    @abstractmethod
    def available_models(self) -> list[str]: ...
