"""Infrastructure Layer: Contains concrete implementations and adapters.

Connects the application to the outside world (LLM provider APIs, the SQLite
history database, environment configuration, the terminal) by implementing
the interfaces defined in the domain layer.
"""
