"""Interface for retrieving provider credentials.

The storage location and protection of keys is up to the implementation.
"""

import abc
from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class CredentialResult:
    """Outcome of a credential lookup. Never raised, always returned."""
    success: bool
    api_key: Optional[str] = None
    error: Optional[str] = None
    user_message: Optional[str] = None


class CredentialProvider(abc.ABC):

    @abc.abstractmethod
    async def safe_get_api_key(self, provider_id: str) -> CredentialResult:
        """Looks up the API key for a provider.

        Returns:
            A CredentialResult; failures carry a user-facing message.
        """
        pass
