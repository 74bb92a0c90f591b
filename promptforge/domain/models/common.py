"""Defines common Value Objects used across different domain contexts.

These objects represent simple values like provider ids, model ids and
record identifiers, ensuring consistency and type safety.
"""

from typing import NewType, Tuple, TypedDict, Optional

# === Core Value Objects ===

# Using NewType for semantic clarity, although they are plain str/int at runtime.
ProviderId = NewType("ProviderId", str)    # e.g. 'openai', 'ollama', 'mock'
ModelId = NewType("ModelId", str)          # e.g. 'gpt-4o-mini', 'llama3.2:latest'
ModelKey = NewType("ModelKey", str)        # '<provider>:<model>', as typed on the CLI
PromptText = NewType("PromptText", str)    # User's text prompt

# === History Context ===
EntryId = NewType("EntryId", str)          # In-memory id of a prompt entry
ResponseId = NewType("ResponseId", str)    # In-memory id of a prompt response
DurableId = NewType("DurableId", int)      # Row id assigned by the history store

# === Settings Context ===
SettingKey = NewType("SettingKey", str)    # Namespaced key in the settings store


# --- Structured Data ---
class TokenUsage(TypedDict):
    """Represents token usage information from an AI call."""
    prompt_tokens: int
    completion_tokens: int
    total_tokens: int


def parse_model_key(model_key: str, default_provider: Optional[str] = None) -> Tuple[ProviderId, ModelId]:
    """Splits '<provider>:<model>' into its parts.

    Only the first colon separates the provider, so Ollama tags such as
    'ollama:llama3.2:latest' keep their ':latest' suffix.

    Raises:
        ValueError: If no provider can be determined or the model part is empty.
    """
    provider, sep, model = model_key.partition(":")
    if not sep:
        if not default_provider:
            raise ValueError(f"Model '{model_key}' must be given as '<provider>:<model>'.")
        provider, model = default_provider, model_key
    if not provider or not model:
        raise ValueError(f"Invalid model key: '{model_key}'")
    return ProviderId(provider), ModelId(model)


def provider_setting_key(provider_id: str) -> SettingKey:
    """Settings-store key holding the saved configuration of one provider."""
    return SettingKey(f"provider_config:{provider_id}")
