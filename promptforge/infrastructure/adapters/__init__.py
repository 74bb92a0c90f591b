"""Provider Adapter Implementations.

One adapter per vendor, each implementing the `ProviderAdapter` contract from
the domain layer, plus the registry that maps provider ids to factories.
Bounded Context: Provider Integration
"""
