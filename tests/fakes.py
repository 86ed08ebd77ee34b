"""In-memory collaborators used by the test suite.

InMemoryWriter stands in for the destination directory; FakeDirectoryAdapter
is a small source plugin with 3 categories, 1 custom field and 120 listings
(124 items in total), the listings fanned out to batch jobs.
"""

from collections.abc import Mapping
from typing import Any, Literal

from listing_migration.adapters.base import SourceAdapter
from listing_migration.migration.mapping import MappingStyle
from listing_migration.migration.sequencer import enqueue_page
from listing_migration.migration.task import ImportSettings, Stage

LISTING_TYPE = "gd_place"
CATEGORY_TAXONOMY = "gd_placecategory"


class InMemoryWriter:
    """Destination writer keeping records and terms in dictionaries."""

    def __init__(self, first_id: int = 1000):
        self.records: dict[str, dict[int, dict[str, Any]]] = {}
        self.terms: dict[str, dict[int, dict[str, Any]]] = {}
        self.writes = 0
        self._next_id = first_id

    def _allocate(self) -> int:
        self._next_id += 1
        return self._next_id

    def find_by_external_id(self, entity_type: str, source_id: Any) -> int | None:
        for destination_id, data in self.records.get(entity_type, {}).items():
            if str(data.get("external_id")) == str(source_id):
                return destination_id
        return None

    def upsert_record(
        self, entity_type: str, destination_id: int | None, data: Mapping[str, Any]
    ) -> int:
        self.writes += 1
        destination_id = destination_id or self._allocate()
        self.records.setdefault(entity_type, {})[destination_id] = dict(data)
        return destination_id

    def upsert_term(self, taxonomy: str, destination_id: int | None, data: Mapping[str, Any]) -> int:
        self.writes += 1
        destination_id = destination_id or self._allocate()
        self.terms.setdefault(taxonomy, {})[destination_id] = dict(data)
        return destination_id

    def count(self) -> int:
        return sum(len(items) for items in self.records.values()) + sum(
            len(items) for items in self.terms.values()
        )


class FakeSettings(ImportSettings):
    listing_status: Literal["publish", "draft"] = "publish"


def make_categories(count: int = 3) -> list[dict[str, Any]]:
    names = ["Cafes", "Hotels", "Museums", "Parks", "Shops"]
    return [{"id": index + 1, "name": names[index % len(names)]} for index in range(count)]


def make_listings(count: int = 120) -> list[dict[str, Any]]:
    return [{"id": 500 + index, "title": f"Listing {index + 1}"} for index in range(count)]


class FakeDirectoryAdapter(SourceAdapter):
    """Source adapter over in-memory rows."""

    adapter_id = "fake"
    title = "Fake Directory"
    stages = (Stage.IMPORT_CATEGORIES, Stage.IMPORT_FIELDS, Stage.PARSE_LISTINGS)
    settings_model = FakeSettings

    def __init__(
        self,
        categories: list[dict[str, Any]] | None = None,
        fields: list[dict[str, Any]] | None = None,
        listings: list[dict[str, Any]] | None = None,
    ):
        self.categories = make_categories() if categories is None else categories
        self.fields = [{"id": 10, "name": "phone"}] if fields is None else fields
        self.listings = make_listings() if listings is None else listings
        self.calls: list[Stage] = []

    def stage_handlers(self):
        return {
            Stage.IMPORT_CATEGORIES: self.import_categories,
            Stage.IMPORT_FIELDS: self.import_fields,
            Stage.PARSE_LISTINGS: self.parse_listings,
        }

    def job_handlers(self):
        return {"import_listings": self.import_listings}

    def count_total_items(self, ctx) -> int:
        return len(self.categories) + len(self.fields) + len(self.listings)

    def import_categories(self, ctx, task):
        self.calls.append(task.stage)
        ctx.progress.log_stage_started(task.stage)
        ctx.import_items(
            self.categories,
            lambda row: ctx.resolver.upsert(
                CATEGORY_TAXONOMY, row["id"], {"name": row["name"]}, taxonomy=True
            ),
            "category",
            name_of=lambda row: row["name"],
            task=task,
        )
        ctx.progress.log_stage_finished(task.stage, task.call_counters)
        return ctx.next_stage(task)

    def import_fields(self, ctx, task):
        self.calls.append(task.stage)
        ctx.progress.log_stage_started(task.stage)
        ctx.import_items(
            self.fields,
            lambda row: ctx.resolver.upsert("custom_field", row["id"], {"name": row["name"]}),
            "field",
            name_of=lambda row: row["name"],
            task=task,
        )
        ctx.progress.log_stage_finished(task.stage, task.call_counters)
        return ctx.next_stage(task)

    def parse_listings(self, ctx, task):
        self.calls.append(task.stage)
        return enqueue_page(
            ctx,
            task,
            lambda offset, limit: self.listings[offset : offset + limit],
            "import_listings",
        )

    def import_listings(self, ctx, job) -> bool:
        ctx.import_items(
            job.payload,
            lambda row: ctx.resolver.upsert(
                LISTING_TYPE,
                row["id"],
                {
                    "title": row["title"],
                    "external_id": row["id"],
                    "status": ctx.settings.listing_status,
                },
                style=MappingStyle.EXTERNAL_ID,
            ),
            "listing",
            name_of=lambda row: row["title"],
        )
        return False
