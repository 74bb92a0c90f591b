import pytest

from promptforge.domain.errors import AdapterError, ErrorCode
from promptforge.infrastructure.adapters.mock_adapter import MockAdapter, MockAdapterFactory
from promptforge.infrastructure.adapters.registry import AdapterRegistry


@pytest.fixture
def registry():
    return AdapterRegistry()


def test_register_and_create(registry):
    registry.register("mock", MockAdapterFactory())
    adapter = registry.create_adapter("mock")

    assert isinstance(adapter, MockAdapter)
    assert registry.has_provider("mock")
    assert registry.get_provider_ids() == ["mock"]
    assert registry.get_all_providers()[0].id == "mock"


def test_each_create_returns_a_new_instance(registry):
    registry.register("mock", MockAdapterFactory())
    assert registry.create_adapter("mock") is not registry.create_adapter("mock")


def test_reregistering_replaces_the_factory(registry):
    first, second = MockAdapterFactory(), MockAdapterFactory()
    registry.register("mock", first)
    registry.register("mock", second)

    assert registry.get_factory("mock") is second
    assert registry.get_provider_ids() == ["mock"]


def test_unknown_provider_raises_provider_not_found(registry):
    with pytest.raises(AdapterError) as exc_info:
        registry.create_adapter("nope")
    assert exc_info.value.code is ErrorCode.PROVIDER_NOT_FOUND
    assert registry.get_factory("nope") is None


def test_unregister(registry):
    registry.register("mock", MockAdapterFactory())
    assert registry.unregister("mock") is True
    assert registry.unregister("mock") is False
    assert not registry.has_provider("mock")
