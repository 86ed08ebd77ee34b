"""
Source-to-destination ID mapping and the per-item upsert discipline.

Every importer resolves first: a hit means update in place, a miss means
create followed by bind. Re-running a migration therefore converges on the
same destination records instead of duplicating them.
"""

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any

from sqlalchemy import func, select

from listing_migration.exceptions import StateError
from listing_migration.migration.database import MigrationDatabase
from listing_migration.migration.models import IDMapping
from listing_migration.migration.task import ImportStatus
from listing_migration.utils.logging import get_logger
from listing_migration.utils.retry import retry_on_locked_database

if TYPE_CHECKING:
    from listing_migration.adapters.base import DestinationWriter

logger = get_logger(__name__)


class MappingStyle(str, Enum):
    """Where the source ID of a migrated entity is remembered."""

    # Reverse lookup against an external-id field on the destination record
    EXTERNAL_ID = "external_id"
    # Row in the id_mappings side table
    SIDE_TABLE = "side_table"


@dataclass
class UpsertOutcome:
    """Result of upserting one item."""

    status: ImportStatus
    destination_id: int | None

    @property
    def is_update(self) -> bool:
        return self.status is ImportStatus.UPDATED


class IdMappingResolver:
    """
    Resolves and binds source IDs within adapter-scoped namespaces.

    Usage:
        resolver = IdMappingResolver(database, "directorist", writer=writer)
        ns = resolver.namespace("category")
        if resolver.resolve(ns, 17) is None:
            resolver.bind(ns, 17, 942)
    """

    def __init__(
        self,
        database: MigrationDatabase,
        adapter_id: str,
        writer: "DestinationWriter | None" = None,
        dry_run: bool = False,
    ):
        """
        Initialize the resolver.

        Args:
            database: Shared migration database handle
            adapter_id: Adapter whose namespaces this resolver builds
            writer: Destination writer used by upsert and external lookups
            dry_run: When True, upsert performs no writes and no binds
        """
        self.database = database
        self.adapter_id = adapter_id
        self.writer = writer
        self.dry_run = dry_run

    def namespace(self, entity_type: str) -> str:
        """Build the namespace for one of this adapter's entity types."""
        return f"{self.adapter_id}:{entity_type}"

    @staticmethod
    def _key(source_id: Any) -> str:
        return str(source_id)

    def resolve(self, namespace: str, source_id: Any) -> int | None:
        """
        Get the destination ID bound to a source ID.

        Args:
            namespace: Mapping namespace
            source_id: Source system ID

        Returns:
            Destination ID if bound, None otherwise

        Raises:
            StateError: If the lookup fails
        """
        try:
            with self.database.session() as session:
                return session.scalar(
                    select(IDMapping.destination_id).filter_by(
                        namespace=namespace, source_id=self._key(source_id)
                    )
                )

        except Exception as e:
            logger.error(
                "Failed to resolve ID mapping",
                namespace=namespace,
                source_id=source_id,
                error=str(e),
            )
            raise StateError(f"Failed to resolve ID mapping: {e}") from e

    def resolve_many(self, namespace: str, source_ids: Iterable[Any]) -> dict[str, int]:
        """
        Resolve several source IDs with a single query.

        Args:
            namespace: Mapping namespace
            source_ids: Source system IDs

        Returns:
            Mapping of source ID (as text) to destination ID, for bound IDs only
        """
        keys = [self._key(source_id) for source_id in source_ids]
        if not keys:
            return {}

        try:
            with self.database.session() as session:
                rows = session.execute(
                    select(IDMapping.source_id, IDMapping.destination_id).where(
                        IDMapping.namespace == namespace,
                        IDMapping.source_id.in_(keys),
                    )
                ).all()
                return {source_id: destination_id for source_id, destination_id in rows}

        except Exception as e:
            logger.error("Failed to resolve ID mappings", namespace=namespace, error=str(e))
            raise StateError(f"Failed to resolve ID mappings: {e}") from e

    @retry_on_locked_database()
    def bind(self, namespace: str, source_id: Any, destination_id: int) -> None:
        """
        Bind a source ID to a destination ID.

        A namespace holds at most one destination ID per source ID, so
        binding an already bound source ID replaces the previous target.

        Args:
            namespace: Mapping namespace
            source_id: Source system ID
            destination_id: Destination record ID

        Raises:
            StateError: If the write fails
        """
        key = self._key(source_id)

        try:
            with self.database.session() as session:
                mapping = session.scalar(
                    select(IDMapping).filter_by(namespace=namespace, source_id=key)
                )

                if mapping is None:
                    session.add(
                        IDMapping(namespace=namespace, source_id=key, destination_id=destination_id)
                    )
                elif mapping.destination_id != destination_id:
                    logger.warning(
                        "Rebinding ID mapping",
                        namespace=namespace,
                        source_id=key,
                        previous_destination_id=mapping.destination_id,
                        destination_id=destination_id,
                    )
                    mapping.destination_id = destination_id

            logger.debug(
                "Bound ID mapping",
                namespace=namespace,
                source_id=key,
                destination_id=destination_id,
            )

        except Exception as e:
            logger.error(
                "Failed to bind ID mapping",
                namespace=namespace,
                source_id=key,
                destination_id=destination_id,
                error=str(e),
            )
            raise StateError(f"Failed to bind ID mapping: {e}") from e

    def count(self, namespace: str | None = None) -> int:
        """
        Count bindings in a namespace, or in all of this adapter's namespaces.

        Args:
            namespace: Mapping namespace (None for every namespace of the adapter)

        Returns:
            Number of bindings
        """
        try:
            with self.database.session() as session:
                query = select(func.count(IDMapping.id))
                if namespace is None:
                    query = query.where(IDMapping.namespace.like(f"{self.adapter_id}:%"))
                else:
                    query = query.where(IDMapping.namespace == namespace)
                return session.scalar(query) or 0

        except Exception as e:
            logger.error("Failed to count ID mappings", namespace=namespace, error=str(e))
            raise StateError(f"Failed to count ID mappings: {e}") from e

    def counts_by_namespace(self) -> dict[str, int]:
        """Count bindings per namespace of this adapter."""
        try:
            with self.database.session() as session:
                rows = session.execute(
                    select(IDMapping.namespace, func.count(IDMapping.id))
                    .where(IDMapping.namespace.like(f"{self.adapter_id}:%"))
                    .group_by(IDMapping.namespace)
                ).all()
                return dict(rows)

        except Exception as e:
            logger.error("Failed to count ID mappings", adapter_id=self.adapter_id, error=str(e))
            raise StateError(f"Failed to count ID mappings: {e}") from e

    def clear_namespace(self, namespace: str | None = None) -> int:
        """
        Forget bindings so the next run creates fresh destination records.

        Args:
            namespace: Namespace to clear (None clears all of the adapter's namespaces)

        Returns:
            Number of bindings removed
        """
        try:
            with self.database.session() as session:
                query = session.query(IDMapping)
                if namespace is None:
                    query = query.filter(IDMapping.namespace.like(f"{self.adapter_id}:%"))
                else:
                    query = query.filter(IDMapping.namespace == namespace)
                count = query.delete(synchronize_session=False)

            logger.info(
                "Cleared ID mappings",
                namespace=namespace or f"{self.adapter_id}:*",
                count=count,
            )
            return count

        except Exception as e:
            logger.error("Failed to clear ID mappings", namespace=namespace, error=str(e))
            raise StateError(f"Failed to clear ID mappings: {e}") from e

    def resolve_external(self, entity_type: str, source_id: Any) -> int | None:
        """
        Look up a destination record by the external-id field it carries.

        Args:
            entity_type: Destination entity type (e.g. the listing post type)
            source_id: Source system ID stored on the destination record

        Returns:
            Destination ID if a record carries the source ID, None otherwise
        """
        if self.writer is None:
            raise StateError("External ID lookups require a destination writer")
        return self.writer.find_by_external_id(entity_type, source_id)

    def upsert(
        self,
        entity_type: str,
        source_id: Any,
        data: Mapping[str, Any],
        style: MappingStyle = MappingStyle.SIDE_TABLE,
        taxonomy: bool = False,
    ) -> UpsertOutcome:
        """
        Create or update one destination record for a source item.

        In dry-run mode the outcome is computed from existing bindings but
        nothing is written and nothing is bound.

        Args:
            entity_type: Entity type (namespace suffix, post type or taxonomy)
            source_id: Source system ID
            data: Destination record data
            style: Where the source ID is remembered
            taxonomy: Write through the term primitive instead of the record one

        Returns:
            UpsertOutcome with CREATED or UPDATED status and the destination ID
        """
        namespace = self.namespace(entity_type)

        if style is MappingStyle.EXTERNAL_ID:
            existing = self.resolve_external(entity_type, source_id)
        else:
            existing = self.resolve(namespace, source_id)

        status = ImportStatus.UPDATED if existing is not None else ImportStatus.CREATED

        if self.dry_run:
            return UpsertOutcome(status=status, destination_id=existing)

        if self.writer is None:
            raise StateError("Upserts require a destination writer")

        if taxonomy:
            destination_id = self.writer.upsert_term(entity_type, existing, data)
        else:
            destination_id = self.writer.upsert_record(entity_type, existing, data)

        if style is MappingStyle.SIDE_TABLE and destination_id != existing:
            self.bind(namespace, source_id, destination_id)

        return UpsertOutcome(status=status, destination_id=destination_id)
