"""Abstract base for upstream providers."""

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator


class UpstreamProvider(ABC):
    """Calls the upstream model API with one credential at a time.

    Failures raise UpstreamError carrying the provider's status code (when
    there is one) and its error text, which the dispatcher classifies.
    """

    @abstractmethod
    async def generate(self, api_key: str, model: str, request: dict) -> str:
        """Run a non-streaming generation and return the full text."""
        ...

    @abstractmethod
    def generate_stream(self, api_key: str, model: str, request: dict) -> AsyncIterator[str]:
        """Run a streaming generation, yielding text fragments as they arrive."""
        ...

    @abstractmethod
    async def list_models(self, api_key: str) -> list[dict]:
        """Return the provider's raw model listing."""
        ...

    async def close(self) -> None:
        """Cleanup resources. Override if provider holds connections."""
        pass
