"""Client factory — pick the model backend from a provider name."""

from __future__ import annotations

from marketeam.config import ANTHROPIC_API_KEY
from marketeam.providers.base import ModelClient


def create_client(provider: str = "anthropic", api_key: str | None = None) -> ModelClient | None:
    """Create a model client, or None when no credentials are configured.

    Without a client the director reviews structurally only.
    """
    provider = provider.lower()
    if provider == "anthropic":
        key = api_key or ANTHROPIC_API_KEY
        if not key:
            return None
        from marketeam.providers.anthropic_provider import AnthropicClient
        return AnthropicClient(api_key=key)
    raise ValueError(f"Unknown provider: {provider}. Use 'anthropic'.")
