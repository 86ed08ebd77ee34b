"""Tests for ID mapping and upsert resolution."""

import pytest
from fakes import InMemoryWriter

from listing_migration.exceptions import StateError
from listing_migration.migration.mapping import IdMappingResolver, MappingStyle
from listing_migration.migration.task import ImportStatus


@pytest.fixture
def resolver(database, writer: InMemoryWriter) -> IdMappingResolver:
    return IdMappingResolver(database, "fake", writer=writer)


class TestResolveBind:
    def test_unbound_source_id_resolves_to_none(self, resolver: IdMappingResolver) -> None:
        assert resolver.resolve(resolver.namespace("category"), 17) is None

    def test_bind_then_resolve(self, resolver: IdMappingResolver) -> None:
        namespace = resolver.namespace("category")
        resolver.bind(namespace, 17, 942)

        assert resolver.resolve(namespace, 17) == 942
        assert resolver.resolve(namespace, "17") == 942

    def test_rebind_replaces_destination(self, resolver: IdMappingResolver) -> None:
        namespace = resolver.namespace("category")
        resolver.bind(namespace, 17, 942)
        resolver.bind(namespace, 17, 943)

        assert resolver.resolve(namespace, 17) == 943
        assert resolver.count(namespace) == 1

    def test_namespaces_are_isolated(self, database, resolver: IdMappingResolver) -> None:
        other = IdMappingResolver(database, "other")
        resolver.bind(resolver.namespace("category"), 1, 100)

        assert resolver.resolve(resolver.namespace("tag"), 1) is None
        assert other.resolve(other.namespace("category"), 1) is None

    def test_resolve_many(self, resolver: IdMappingResolver) -> None:
        namespace = resolver.namespace("field")
        resolver.bind(namespace, 1, 101)
        resolver.bind(namespace, 2, 102)

        assert resolver.resolve_many(namespace, [1, 2, 3]) == {"1": 101, "2": 102}
        assert resolver.resolve_many(namespace, []) == {}

    def test_count_and_clear(self, resolver: IdMappingResolver) -> None:
        resolver.bind(resolver.namespace("category"), 1, 101)
        resolver.bind(resolver.namespace("category"), 2, 102)
        resolver.bind(resolver.namespace("field"), 1, 201)

        assert resolver.count() == 3
        assert resolver.counts_by_namespace() == {"fake:category": 2, "fake:field": 1}

        assert resolver.clear_namespace(resolver.namespace("category")) == 2
        assert resolver.count() == 1
        assert resolver.clear_namespace() == 1
        assert resolver.count() == 0


class TestUpsert:
    def test_side_table_creates_then_updates(
        self, resolver: IdMappingResolver, writer: InMemoryWriter
    ) -> None:
        created = resolver.upsert("gd_placecategory", 5, {"name": "Cafes"}, taxonomy=True)
        updated = resolver.upsert("gd_placecategory", 5, {"name": "Coffee"}, taxonomy=True)

        assert created.status is ImportStatus.CREATED
        assert updated.status is ImportStatus.UPDATED
        assert updated.destination_id == created.destination_id
        assert writer.terms["gd_placecategory"][created.destination_id] == {"name": "Coffee"}
        assert resolver.resolve(resolver.namespace("gd_placecategory"), 5) == created.destination_id

    def test_external_id_style_does_not_bind(
        self, resolver: IdMappingResolver, writer: InMemoryWriter
    ) -> None:
        data = {"title": "Cafe", "external_id": 77}
        created = resolver.upsert("gd_place", 77, data, style=MappingStyle.EXTERNAL_ID)
        updated = resolver.upsert("gd_place", 77, data, style=MappingStyle.EXTERNAL_ID)

        assert created.status is ImportStatus.CREATED
        assert updated.is_update
        assert updated.destination_id == created.destination_id
        assert len(writer.records["gd_place"]) == 1
        assert resolver.count() == 0

    def test_dry_run_writes_and_binds_nothing(self, database, writer: InMemoryWriter) -> None:
        resolver = IdMappingResolver(database, "fake", writer=writer, dry_run=True)

        outcome = resolver.upsert("custom_field", 1, {"name": "phone"})

        assert outcome.status is ImportStatus.CREATED
        assert outcome.destination_id is None
        assert writer.writes == 0
        assert resolver.count() == 0

    def test_dry_run_reports_update_for_bound_items(self, database, writer: InMemoryWriter) -> None:
        live = IdMappingResolver(database, "fake", writer=writer)
        bound = live.upsert("custom_field", 1, {"name": "phone"})
        writes = writer.writes

        dry = IdMappingResolver(database, "fake", writer=writer, dry_run=True)
        outcome = dry.upsert("custom_field", 1, {"name": "phone"})

        assert outcome.status is ImportStatus.UPDATED
        assert outcome.destination_id == bound.destination_id
        assert writer.writes == writes

    def test_upsert_without_writer_fails(self, database) -> None:
        resolver = IdMappingResolver(database, "fake")

        with pytest.raises(StateError):
            resolver.upsert("custom_field", 1, {"name": "phone"})
