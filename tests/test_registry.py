"""Tests for adapter validation and the adapter registry."""

import pytest
from fakes import FakeDirectoryAdapter, InMemoryWriter

from listing_migration.adapters.registry import (
    AdapterRegistry,
    import_from_string,
    load_destination_writer,
)
from listing_migration.config import MigrationConfig
from listing_migration.exceptions import AdapterError, ConfigurationError
from listing_migration.migration.task import Stage


class MissingHandlerAdapter(FakeDirectoryAdapter):
    adapter_id = "missing-handler"
    stages = (Stage.IMPORT_CATEGORIES, Stage.IMPORT_TAGS)


class DuplicateStageAdapter(FakeDirectoryAdapter):
    adapter_id = "duplicate"
    stages = (Stage.IMPORT_CATEGORIES, Stage.IMPORT_CATEGORIES)

    def stage_handlers(self):
        return {Stage.IMPORT_CATEGORIES: self.import_categories}


class ExtraHandlerAdapter(FakeDirectoryAdapter):
    adapter_id = "extra-handler"
    stages = (Stage.IMPORT_CATEGORIES, Stage.IMPORT_FIELDS)


class NoIdAdapter(FakeDirectoryAdapter):
    adapter_id = ""


class NotAWriter:
    def upsert_record(self, entity_type, destination_id, data):
        return 1


class TestAdapterValidation:
    def test_fake_adapter_is_valid(self) -> None:
        FakeDirectoryAdapter().validate()

    @pytest.mark.parametrize(
        ("adapter_class", "message"),
        [
            (MissingHandlerAdapter, "no handler for stage"),
            (DuplicateStageAdapter, "more than once"),
            (ExtraHandlerAdapter, "undeclared stage"),
            (NoIdAdapter, "does not declare an adapter_id"),
        ],
    )
    def test_contract_violations(self, adapter_class, message) -> None:
        with pytest.raises(AdapterError, match=message):
            adapter_class().validate()


class TestAdapterRegistry:
    def test_register_and_get(self, adapter) -> None:
        registry = AdapterRegistry()
        registry.register(adapter)

        assert registry.get("fake") is adapter
        assert "fake" in registry
        assert len(registry) == 1
        assert list(registry) == [adapter]

    def test_duplicate_id_is_rejected(self) -> None:
        registry = AdapterRegistry()
        registry.register(FakeDirectoryAdapter())

        with pytest.raises(AdapterError, match="already registered"):
            registry.register(FakeDirectoryAdapter())

    def test_unknown_adapter_lists_available(self, registry) -> None:
        with pytest.raises(AdapterError, match="available: fake"):
            registry.get("directorist")

    def test_from_config(self) -> None:
        config = MigrationConfig(adapters={"fake": "fakes:FakeDirectoryAdapter"})

        registry = AdapterRegistry.from_config(config)

        assert registry.ids() == ["fake"]

    def test_from_config_checks_id(self) -> None:
        config = MigrationConfig(adapters={"directorist": "fakes:FakeDirectoryAdapter"})

        with pytest.raises(AdapterError, match="declares adapter_id 'fake'"):
            AdapterRegistry.from_config(config)


class TestImports:
    def test_import_from_string(self) -> None:
        assert import_from_string("fakes:InMemoryWriter") is InMemoryWriter

    @pytest.mark.parametrize(
        "path", ["fakes", "fakes:", "no_such_module_here:Thing", "fakes:NoSuchThing"]
    )
    def test_bad_paths(self, path) -> None:
        with pytest.raises(ConfigurationError):
            import_from_string(path)

    def test_writer_is_optional(self) -> None:
        assert load_destination_writer(MigrationConfig()) is None

    def test_writer_is_loaded(self) -> None:
        config = MigrationConfig(destination_writer="fakes:InMemoryWriter")

        assert isinstance(load_destination_writer(config), InMemoryWriter)

    def test_incomplete_writer_is_rejected(self) -> None:
        config = MigrationConfig(destination_writer="test_registry:NotAWriter")

        with pytest.raises(ConfigurationError, match="destination writer interface"):
            load_destination_writer(config)
