"""Read side of the furniture table: what customers and dashboards see."""

from furniview.conversion.interfaces import FurnitureStore, ObjectStorage
from furniview.conversion.service import FurnitureStatus
from furniview.errors import RecordNotFound

LIST_FIELDS = ("id", "name", "description", "created_at", "gltf_file_path")
DETAIL_FIELDS = LIST_FIELDS + ("status",)


class FurnitureCatalog:
    def __init__(self, store: FurnitureStore, storage: ObjectStorage, *, gltf_bucket: str) -> None:
        self._store = store
        self._storage = storage
        self._gltf_bucket = gltf_bucket

    def _gltf_url(self, row: dict[str, object]) -> str | None:
        path = row.get("gltf_file_path")
        if not path:
            return None
        return self._storage.public_url(self._gltf_bucket, str(path))

    def _project(self, row: dict[str, object], fields: tuple[str, ...]) -> dict[str, object]:
        item = {f: row.get(f) for f in fields}
        item["gltf_url"] = self._gltf_url(row)
        return item

    def list_published(self) -> list[dict[str, object]]:
        """Converted furniture, newest first."""
        rows = self._store.list_by_status(FurnitureStatus.CONVERTED)
        return [self._project(r, LIST_FIELDS) for r in rows]

    def get_published(self, record_id: str) -> dict[str, object]:
        row = self._store.get(record_id)
        if row is None or row.get("status") != FurnitureStatus.CONVERTED:
            raise RecordNotFound(f"Furniture item with ID {record_id} not found or not converted.")
        return self._project(row, DETAIL_FIELDS)

    def list_for_company(self, company_id: str) -> list[dict[str, object]]:
        """Every record of the company regardless of status, newest first."""
        return [{**r, "gltf_url": self._gltf_url(r)} for r in self._store.list_by_company(company_id)]
