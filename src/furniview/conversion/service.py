import asyncio
import json
import logging
import mimetypes
import tempfile
import time
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path, PurePosixPath
from typing import Awaitable, Callable
from urllib.parse import quote

from furniview.errors import ConversionError, EmptyUpload, InvalidState, RecordNotFound, UploadTooLarge

from .interfaces import ConversionPaths, ConverterGateway, FurnitureStore, ObjectStorage

logger = logging.getLogger(__name__)

CONVERTIBLE_EXTENSIONS = (".stl", ".obj", ".fbx", ".glb", ".gltf")
GLTF_CONTENT_TYPE = "model/gltf+json"


class FurnitureStatus:
    UPLOADED = "uploaded"
    CONVERTED = "converted"
    CONVERSION_FAILED = "conversion_failed"
    SKIPPED_CONVERSION = "skipped_conversion"


@dataclass
class FurnitureRecord:
    data: dict[str, object]

    @property
    def id(self) -> str:
        return str(self.data["id"])  # type: ignore[index]

    @property
    def company_id(self) -> str:
        return str(self.data["company_id"])  # type: ignore[index]

    @property
    def status(self) -> str:
        return str(self.data.get("status", ""))


def _now() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def safe_filename(filename: str | None) -> str:
    # Clients may send full paths; keep the last component only
    name = (filename or "").replace("\\", "/").rsplit("/", 1)[-1].strip()
    return name or "upload"


def is_convertible(filename: str) -> bool:
    return filename.lower().endswith(CONVERTIBLE_EXTENSIONS)


def gltf_key_for(original_key: str) -> str:
    return str(PurePosixPath(original_key).with_suffix(".gltf"))


def companion_dir_for(gltf_key: str) -> str:
    """Directory next to the GLTF key that holds its buffers and textures."""
    key = PurePosixPath(gltf_key)
    return str(key.parent / key.stem)


def relocate_companion_uris(gltf_data: bytes, prefix: str) -> bytes:
    """Prefix every relative buffer and image URI of a JSON glTF document."""
    try:
        doc = json.loads(gltf_data)
    except ValueError as e:
        raise ConversionError("converter output is not a JSON glTF document") from e
    for section in ("buffers", "images"):
        for item in doc.get(section) or []:
            uri = item.get("uri")
            if uri and not uri.startswith("data:") and "://" not in uri:
                item["uri"] = f"{prefix}/{uri}"
    return json.dumps(doc, ensure_ascii=False, indent=2).encode("utf-8")


class ConversionService:
    """Core domain service for furniture uploads and their GLTF conversion.

    This service is framework-agnostic. It stores uploads through the object
    storage gateway, tracks them as rows in the furniture store and runs a
    fixed pool of async workers that call the external converter.
    """

    def __init__(
        self,
        store: FurnitureStore,
        storage: ObjectStorage,
        converter: ConverterGateway,
        *,
        original_bucket: str,
        gltf_bucket: str,
        workers: int = 2,
    ) -> None:
        self._store = store
        self._storage = storage
        self._converter = converter
        self._original_bucket = original_bucket
        self._gltf_bucket = gltf_bucket
        self._workers = workers
        self._queue: asyncio.Queue[str] = asyncio.Queue()
        self._tasks: list[asyncio.Task] = []

    @property
    def queue(self) -> asyncio.Queue[str]:
        return self._queue

    async def start(self) -> None:
        for i in range(self._workers):
            task = asyncio.create_task(self._worker_loop(f"worker-{i+1}"))
            self._tasks.append(task)
        logger.info("Started %d conversion workers", self._workers)

    async def stop(self) -> None:
        for t in self._tasks:
            t.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()

    async def create_from_upload(
        self,
        company_id: str,
        filename: str | None,
        content_type: str | None,
        reader: Callable[[int], Awaitable[bytes]],
        *,
        name: str | None = None,
        description: str | None = None,
        max_upload_mb: int,
    ) -> FurnitureRecord:
        """Store the upload, insert its furniture row and schedule conversion."""
        original_name = safe_filename(filename)
        data = await self._read_upload(reader, max_upload_mb)
        content_type = content_type or "application/octet-stream"

        key = f"{company_id}/{int(time.time() * 1000)}-{original_name}"
        await asyncio.to_thread(self._storage.upload, self._original_bucket, key, data, content_type)
        logger.info("Stored original %s/%s (%d bytes)", self._original_bucket, key, len(data))

        now = _now()
        row: dict[str, object] = {
            "id": str(uuid.uuid4()),
            "company_id": company_id,
            "name": (name or "").strip() or original_name,
            "description": (description or "").strip() or None,
            "original_file_path": key,
            "gltf_file_path": None,
            "file_type": content_type,
            "status": FurnitureStatus.UPLOADED,
            "created_at": now,
            "updated_at": now,
        }
        try:
            created = await asyncio.to_thread(self._store.insert, row)
        except Exception:
            logger.error("Insert failed for %s; removing stored original", key)
            await self._remove_quietly(self._original_bucket, [key])
            raise

        record = FurnitureRecord(created)
        if is_convertible(original_name):
            await self._queue.put(record.id)
            logger.info("Queued conversion for %s", record.id)
        else:
            logger.info("Skipping conversion for non-3D file %s", original_name)
            updated = await asyncio.to_thread(
                self._store.update,
                record.id,
                {"status": FurnitureStatus.SKIPPED_CONVERSION, "updated_at": _now()},
            )
            record = FurnitureRecord(updated)
        return record

    def load(self, record_id: str) -> FurnitureRecord:
        data = self._store.get(record_id)
        if data is None:
            raise RecordNotFound(f"furniture {record_id} not found")
        return FurnitureRecord(data)

    async def retry(self, record_id: str) -> FurnitureRecord:
        record = await asyncio.to_thread(self.load, record_id)
        if record.status not in (FurnitureStatus.CONVERSION_FAILED, FurnitureStatus.UPLOADED):
            raise InvalidState(f"cannot convert a record in status {record.status}")
        if not is_convertible(str(record.data.get("original_file_path", ""))):
            raise InvalidState("original file is not a convertible 3D model")
        updated = await asyncio.to_thread(
            self._store.update, record_id, {"status": FurnitureStatus.UPLOADED, "updated_at": _now()}
        )
        await self._queue.put(record_id)
        logger.info("Re-queued conversion for %s", record_id)
        return FurnitureRecord(updated)

    async def update_details(
        self, record_id: str, *, name: str | None = None, description: str | None = None
    ) -> FurnitureRecord:
        updates: dict[str, object] = {}
        if name is not None:
            if not name.strip():
                raise ValueError("name must not be blank")
            updates["name"] = name.strip()
        if description is not None:
            updates["description"] = description.strip() or None
        if not updates:
            return await asyncio.to_thread(self.load, record_id)
        updates["updated_at"] = _now()
        data = await asyncio.to_thread(self._store.update, record_id, updates)
        return FurnitureRecord(data)

    async def delete(self, record_id: str) -> None:
        record = await asyncio.to_thread(self.load, record_id)
        await asyncio.to_thread(self._store.delete, record_id)
        original_key = record.data.get("original_file_path")
        if original_key:
            await self._remove_quietly(self._original_bucket, [str(original_key)])
        gltf_key = record.data.get("gltf_file_path")
        if gltf_key:
            keys = await asyncio.to_thread(self._output_keys, str(gltf_key))
            await self._remove_quietly(self._gltf_bucket, keys)
        logger.info("Deleted furniture %s", record_id)

    async def convert(self, record_id: str) -> bool:
        """Run one conversion end to end. Returns True when the record ends up converted."""
        uploaded: list[str] = []
        try:
            record = await asyncio.to_thread(self.load, record_id)
            original_key = str(record.data["original_file_path"])  # type: ignore[index]
            gltf_key = gltf_key_for(original_key)
            logger.info("Starting conversion for %s (%s)", record_id, original_key)

            with tempfile.TemporaryDirectory(prefix="furniview-convert-") as work_dir:
                paths = ConversionPaths.for_key(work_dir, original_key)
                data = await asyncio.to_thread(self._storage.download, self._original_bucket, original_key)
                await asyncio.to_thread(Path(paths.input_path).write_bytes, data)
                await asyncio.to_thread(self._converter.convert_to_gltf, paths.input_path, paths.output_path)
                uploaded = await self._upload_outputs(paths, gltf_key)

            try:
                await asyncio.to_thread(
                    self._store.update,
                    record_id,
                    {"gltf_file_path": gltf_key, "status": FurnitureStatus.CONVERTED, "updated_at": _now()},
                )
            except Exception:
                await self._remove_quietly(self._gltf_bucket, uploaded)
                raise
            logger.info("Conversion completed for %s -> %s/%s", record_id, self._gltf_bucket, gltf_key)
            return True
        except Exception:
            logger.exception("Conversion failed for %s", record_id)
            await self._mark_failed(record_id)
            return False

    async def _worker_loop(self, name: str) -> None:
        while True:
            record_id = await self._queue.get()
            try:
                logger.debug("%s picked up %s", name, record_id)
                await self.convert(record_id)
            finally:
                self._queue.task_done()

    async def _read_upload(self, reader: Callable[[int], Awaitable[bytes]], max_upload_mb: int) -> bytes:
        CHUNK = 1024 * 1024
        max_bytes = max_upload_mb * 1024 * 1024
        buf = bytearray()
        while True:
            chunk = await reader(CHUNK)
            if not chunk:
                break
            buf.extend(chunk)
            if len(buf) > max_bytes:
                raise UploadTooLarge(max_upload_mb)
        if not buf:
            raise EmptyUpload("uploaded file is empty")
        return bytes(buf)

    async def _upload_outputs(self, paths: ConversionPaths, gltf_key: str) -> list[str]:
        """Upload the companion files under the record's own directory, then the .gltf.

        Companions keep their layout relative to the converter output, and the
        .gltf URIs are rewritten to point into that directory.
        """
        companion_dir = PurePosixPath(companion_dir_for(gltf_key))
        output_dir = Path(paths.output_dir)
        output_path = Path(paths.output_path)
        companions = sorted(p for p in output_dir.rglob("*") if p.is_file() and p != output_path)

        gltf_data = await asyncio.to_thread(output_path.read_bytes)
        if companions:
            gltf_data = relocate_companion_uris(gltf_data, quote(companion_dir.name))

        uploaded: list[str] = []
        try:
            for f in companions:
                key = str(companion_dir / f.relative_to(output_dir).as_posix())
                content_type = mimetypes.guess_type(f.name)[0] or "application/octet-stream"
                data = await asyncio.to_thread(f.read_bytes)
                await asyncio.to_thread(
                    self._storage.upload, self._gltf_bucket, key, data, content_type, upsert=True
                )
                uploaded.append(key)
            await asyncio.to_thread(
                self._storage.upload, self._gltf_bucket, gltf_key, gltf_data, GLTF_CONTENT_TYPE, upsert=True
            )
            uploaded.append(gltf_key)
        except Exception:
            await self._remove_quietly(self._gltf_bucket, uploaded)
            raise
        return uploaded

    def _output_keys(self, gltf_key: str) -> list[str]:
        companions = self._storage.list_keys(self._gltf_bucket, companion_dir_for(gltf_key))
        return sorted({gltf_key, *companions})

    async def _mark_failed(self, record_id: str) -> None:
        try:
            await asyncio.to_thread(
                self._store.update,
                record_id,
                {"status": FurnitureStatus.CONVERSION_FAILED, "updated_at": _now()},
            )
            logger.info("Marked %s as %s", record_id, FurnitureStatus.CONVERSION_FAILED)
        except Exception:
            logger.exception("Failed to mark %s as %s", record_id, FurnitureStatus.CONVERSION_FAILED)

    async def _remove_quietly(self, bucket: str, keys: list[str]) -> None:
        if not keys:
            return
        try:
            await asyncio.to_thread(self._storage.remove, bucket, keys)
        except Exception:
            logger.exception("Cleanup of %s in %s failed", keys, bucket)
