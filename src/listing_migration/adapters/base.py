"""
Contracts between the migration pipeline and its collaborators.

A SourceAdapter knows one third-party directory plugin: which stages it
runs, how each stage reads the source, and how many items a run will
process. A DestinationWriter is the storage primitive of the destination
directory. The pipeline itself never touches either system directly.
"""

from abc import ABC, abstractmethod
from collections.abc import Callable, Mapping, Sequence
from typing import TYPE_CHECKING, Any, ClassVar, Protocol, runtime_checkable

import pydantic

from listing_migration.exceptions import AdapterError, ValidationError
from listing_migration.migration.task import (
    BatchJob,
    ImportSettings,
    MigrationTask,
    Stage,
    UploadedFile,
)

if TYPE_CHECKING:
    from listing_migration.migration.context import MigrationContext

StageHandler = Callable[["MigrationContext", MigrationTask], MigrationTask | None]
JobHandler = Callable[["MigrationContext", BatchJob], bool]


@runtime_checkable
class DestinationWriter(Protocol):
    """Storage primitives of the destination directory."""

    def find_by_external_id(self, entity_type: str, source_id: Any) -> int | None:
        """Find the record of a type that carries a source ID in its external-id field."""
        ...

    def upsert_record(
        self, entity_type: str, destination_id: int | None, data: Mapping[str, Any]
    ) -> int:
        """Create (destination_id is None) or update a record and return its ID."""
        ...

    def upsert_term(
        self, taxonomy: str, destination_id: int | None, data: Mapping[str, Any]
    ) -> int:
        """Create (destination_id is None) or update a taxonomy term and return its ID."""
        ...


class SourceAdapter(ABC):
    """
    Base class for source plugin adapters.

    Subclasses declare their ordered stages and provide one handler per
    stage. Stages that fan out into batch jobs also provide job handlers
    keyed by action name.

    Example:
        class DirectoristAdapter(SourceAdapter):
            adapter_id = "directorist"
            title = "Directorist"
            stages = (Stage.IMPORT_CATEGORIES, Stage.PARSE_LISTINGS)

            def stage_handlers(self):
                return {
                    Stage.IMPORT_CATEGORIES: self.import_categories,
                    Stage.PARSE_LISTINGS: self.parse_listings,
                }
    """

    adapter_id: ClassVar[str]
    title: ClassVar[str] = ""
    description: ClassVar[str] = ""
    stages: ClassVar[tuple[Stage, ...]] = ()
    settings_model: ClassVar[type[ImportSettings]] = ImportSettings

    @abstractmethod
    def stage_handlers(self) -> Mapping[Stage, StageHandler]:
        """Return the handler of every declared stage."""

    def job_handlers(self) -> Mapping[str, JobHandler]:
        """Return batch job handlers keyed by action name."""
        return {}

    def validate_settings(
        self, raw: Mapping[str, Any], files: Sequence[UploadedFile] = ()
    ) -> ImportSettings:
        """
        Validate user-supplied settings before a run starts.

        Args:
            raw: Raw settings submitted by the user
            files: Uploaded files accompanying the settings

        Returns:
            Validated settings

        Raises:
            ValidationError: If the settings are invalid
        """
        try:
            return self.settings_model.model_validate(dict(raw))
        except pydantic.ValidationError as e:
            errors = {
                ".".join(str(part) for part in error["loc"]) or "settings": error["msg"]
                for error in e.errors()
            }
            raise ValidationError("Invalid import settings", errors) from e

    @abstractmethod
    def count_total_items(self, ctx: "MigrationContext") -> int:
        """Count the items a run will process, for the progress percentage."""

    def validate(self) -> None:
        """
        Check the adapter's declarations against its handlers.

        Raises:
            AdapterError: If the adapter violates the contract
        """
        adapter_id = getattr(self, "adapter_id", None)
        if not adapter_id:
            raise AdapterError(f"{type(self).__name__} does not declare an adapter_id")

        if not self.stages:
            raise AdapterError(f"Adapter '{adapter_id}' declares no stages")

        for stage in self.stages:
            if not isinstance(stage, Stage):
                raise AdapterError(f"Adapter '{adapter_id}' declares unknown stage {stage!r}")

        if len(set(self.stages)) != len(self.stages):
            raise AdapterError(f"Adapter '{adapter_id}' declares a stage more than once")

        handlers = self.stage_handlers()
        missing = [stage.value for stage in self.stages if stage not in handlers]
        if missing:
            raise AdapterError(
                f"Adapter '{adapter_id}' has no handler for stage(s): {', '.join(missing)}"
            )

        undeclared = [stage.value for stage in handlers if stage not in self.stages]
        if undeclared:
            raise AdapterError(
                f"Adapter '{adapter_id}' has handlers for undeclared stage(s): "
                f"{', '.join(undeclared)}"
            )

        for action, handler in self.job_handlers().items():
            if not callable(handler):
                raise AdapterError(f"Adapter '{adapter_id}' job handler '{action}' is not callable")
