"""Credential lookup for provider API keys."""
