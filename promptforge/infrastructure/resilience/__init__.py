"""API Resilience Implementations.

Contains the retry service that re-executes transient provider failures
with a fixed delay.
Bounded Context: API Resilience
"""
