"""Factory pattern for creating generation client instances."""

from genbatch.adapters.generation.base import AbstractGenerationClient
from genbatch.adapters.generation.minimax_client import MinimaxHTTPClient
from genbatch.core.config import ProviderSettings
from genbatch.core.errors import ConfigurationAppError


def create_generation_client(provider: ProviderSettings) -> AbstractGenerationClient:
    """Instantiate the generation client for the configured provider.

    Args:
        provider: Provider settings group.

    Returns:
        AbstractGenerationClient: Configured client instance.

    Raises:
        ConfigurationAppError: If the provider is unknown or lacks an API key.
    """
    name = provider.name.lower()

    if name == "minimax":
        if not provider.api_key:
            raise ConfigurationAppError(
                code="provider_missing_api_key",
                message="MiniMax provider requires PROVIDER_API_KEY environment variable",
                details={"hint": "Set PROVIDER_API_KEY or add it to the .env file"},
            )
        return MinimaxHTTPClient(
            api_key=provider.api_key,
            base_url=provider.base_url,
            timeout_seconds=provider.timeout_seconds,
            retry_attempts=provider.retry_attempts,
            retry_delay_seconds=provider.retry_delay_seconds,
        )

    raise ConfigurationAppError(
        code="provider_unknown",
        message=f"Unknown generation provider: '{provider.name}'. Supported providers: minimax",
    )
