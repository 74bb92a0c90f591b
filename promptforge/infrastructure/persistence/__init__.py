"""Durable History Storage.

SQLite-backed record store, mapping between in-memory entities and durable
records, and the debounced flusher used for streaming writes.
Bounded Context: History Persistence
"""
