"""promptforge: send one prompt to many LLM providers and keep the history."""

__version__ = "0.1.0"
