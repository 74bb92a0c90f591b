"""Credential provider reading API keys from the configuration layer.

Keys come from the environment, the .env file or the YAML config (see
settings.get_api_key). The mock provider has a built-in key.
"""

import logging
from typing import Dict, Optional

from promptforge.domain.interfaces.credentials import CredentialProvider, CredentialResult
from promptforge.infrastructure.config import settings

logger = logging.getLogger(__name__)

BUILTIN_KEYS: Dict[str, str] = {"mock": "mock-api-key"}


class EnvCredentialProvider(CredentialProvider):

    def __init__(self, overrides: Optional[Dict[str, str]] = None):
        self._overrides = dict(overrides or {})

    def set_api_key(self, provider_id: str, api_key: str) -> None:
        """Sets a key for this process only; nothing is written to disk."""
        self._overrides[provider_id] = api_key

    async def safe_get_api_key(self, provider_id: str) -> CredentialResult:
        try:
            key = self._overrides.get(provider_id) or settings.get_api_key(provider_id) or BUILTIN_KEYS.get(provider_id)
        except Exception as e:
            logger.error(f"Failed to read API key for {provider_id}: {e}", exc_info=True)
            return CredentialResult(
                success=False,
                error=str(e),
                user_message=f"Could not read the API key for {provider_id}.",
            )
        if not key:
            env_name = f"{provider_id.upper()}_API_KEY"
            return CredentialResult(
                success=False,
                error=f"No API key configured for {provider_id}",
                user_message=f"No API key found for {provider_id}. Set {env_name} in your environment or .env file.",
            )
        return CredentialResult(success=True, api_key=key)
