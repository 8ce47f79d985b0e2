"""Provider credential hand-off

The interactive signup / OAuth flow lives outside this package. Once it has
obtained an API key it calls ``store_provider_secret`` (or
``configure_provider`` to also select the provider), and the key lands in
the secret namespace.
"""

import logging
import re
from typing import Optional

from agentconfig.config.base import ConfigStore
from agentconfig.config.values import Namespace

logger = logging.getLogger(__name__)

PROVIDER_KEY = "provider"
MODEL_KEY = "model"


def provider_secret_key(provider_name: str) -> str:
    """Secret key holding a provider's API key, e.g. openrouter -> OPENROUTER_API_KEY"""
    normalized = re.sub(r"[^A-Za-z0-9]+", "_", provider_name.strip()).strip("_").upper()
    if not normalized:
        raise ValueError(f"Invalid provider name: {provider_name!r}")
    return f"{normalized}_API_KEY"


def store_provider_secret(store: ConfigStore, provider_name: str, secret_value: str) -> str:
    """
    Save a provider API key in the secret namespace

    Args:
        store: Config store
        provider_name: Provider identifier (e.g. "openrouter")
        secret_value: The API key

    Returns:
        The secret key it was stored under
    """
    key = provider_secret_key(provider_name)
    store.set(key, secret_value, Namespace.SECRET)
    logger.info(f"Stored API key for provider '{provider_name}' as secret '{key}'")
    return key


def configure_provider(
    store: ConfigStore,
    provider_name: str,
    secret_value: str,
    model: Optional[str] = None,
) -> None:
    """Store the provider key and make it the active provider (and model, if given)"""
    store_provider_secret(store, provider_name, secret_value)
    store.set(PROVIDER_KEY, provider_name)
    if model is not None:
        store.set(MODEL_KEY, model)
    logger.info(f"Configured provider '{provider_name}'" + (f" with model '{model}'" if model else ""))
