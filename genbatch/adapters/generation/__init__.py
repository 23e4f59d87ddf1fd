"""Generation adapter layer - abstracts over remote media generation providers."""

from genbatch.adapters.generation.base import AbstractGenerationClient
from genbatch.adapters.generation.factory import create_generation_client
from genbatch.adapters.generation.minimax_client import MinimaxHTTPClient

__all__ = [
    "AbstractGenerationClient",
    "MinimaxHTTPClient",
    "create_generation_client",
]
