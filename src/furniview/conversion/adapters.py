import logging
import subprocess
import threading
from pathlib import Path
from typing import Sequence

from supabase import Client

from furniview.errors import ConversionError, RecordNotFound, StorageError
from furniview.jsonfile import JsonFile

from .interfaces import ConverterGateway, FurnitureStore, ObjectStorage

logger = logging.getLogger(__name__)

LIST_PAGE_SIZE = 100


class AssimpConverter(ConverterGateway):
    """Runs ``assimp export <input> <output.gltf>`` as a subprocess."""

    def __init__(self, binary: str = "assimp", extra_args: Sequence[str] = (), *, timeout_sec: int = 600) -> None:
        self._binary = binary
        self._extra_args = list(extra_args)
        self._timeout = timeout_sec

    def convert_to_gltf(self, input_path: str, output_path: str) -> None:
        cmd = [self._binary, "export", input_path, output_path, *self._extra_args]
        logger.info("Executing converter: %s", " ".join(cmd))
        try:
            proc = subprocess.run(cmd, capture_output=True, text=True, timeout=self._timeout)
        except FileNotFoundError as e:
            raise ConversionError(f"converter binary not found: {self._binary}") from e
        except subprocess.TimeoutExpired as e:
            raise ConversionError(f"converter timed out after {self._timeout}s") from e

        stderr = (proc.stderr or "").strip()
        if proc.returncode != 0:
            detail = stderr or (proc.stdout or "").strip()
            raise ConversionError(f"assimp exited with status {proc.returncode}: {detail}")
        if stderr:
            # assimp reports warnings on stderr even when the export succeeds
            logger.warning("Converter stderr for %s: %s", input_path, stderr)
        if not Path(output_path).is_file():
            raise ConversionError(f"converter produced no output at {output_path}")


class SupabaseObjectStorage(ObjectStorage):
    def __init__(self, client: Client) -> None:
        self._client = client

    def upload(self, bucket: str, key: str, data: bytes, content_type: str, *, upsert: bool = False) -> str:
        try:
            self._client.storage.from_(bucket).upload(
                path=key,
                file=data,
                file_options={"content-type": content_type, "upsert": "true" if upsert else "false"},
            )
        except Exception as e:
            raise StorageError(f"upload to {bucket}/{key} failed: {e}") from e
        return key

    def download(self, bucket: str, key: str) -> bytes:
        try:
            return self._client.storage.from_(bucket).download(key)
        except Exception as e:
            raise StorageError(f"download of {bucket}/{key} failed: {e}") from e

    def remove(self, bucket: str, keys: list[str]) -> None:
        if not keys:
            return
        try:
            self._client.storage.from_(bucket).remove(keys)
        except Exception as e:
            raise StorageError(f"removal from {bucket} failed: {e}") from e

    def list_keys(self, bucket: str, directory: str) -> list[str]:
        # storage list() returns one folder level per call, capped at `limit` entries
        keys: list[str] = []
        pending = [directory.strip("/")]
        while pending:
            current = pending.pop()
            offset = 0
            while True:
                options = {"limit": LIST_PAGE_SIZE, "offset": offset, "sortBy": {"column": "name", "order": "asc"}}
                try:
                    entries = self._client.storage.from_(bucket).list(current, options) or []
                except Exception as e:
                    raise StorageError(f"listing {bucket}/{current} failed: {e}") from e
                for entry in entries:
                    name = entry.get("name")
                    if not name:
                        continue
                    path = f"{current}/{name}" if current else name
                    if entry.get("id") is None:
                        pending.append(path)
                    else:
                        keys.append(path)
                if len(entries) < LIST_PAGE_SIZE:
                    break
                offset += LIST_PAGE_SIZE
        return sorted(keys)

    def public_url(self, bucket: str, key: str) -> str:
        return self._client.storage.from_(bucket).get_public_url(key)


class SupabaseFurnitureStore(FurnitureStore):
    def __init__(self, client: Client, table: str = "furniture") -> None:
        self._client = client
        self._table = table

    def insert(self, row: dict[str, object]) -> dict[str, object]:
        return self._client.table(self._table).insert(row).execute().data[0]

    def get(self, record_id: str) -> dict[str, object] | None:
        rows = self._client.table(self._table).select("*").eq("id", record_id).execute().data
        return rows[0] if rows else None

    def update(self, record_id: str, updates: dict[str, object]) -> dict[str, object]:
        rows = self._client.table(self._table).update(updates).eq("id", record_id).execute().data
        if not rows:
            raise RecordNotFound(f"furniture {record_id} not found")
        return rows[0]

    def delete(self, record_id: str) -> None:
        self._client.table(self._table).delete().eq("id", record_id).execute()

    def list_by_status(self, status: str) -> list[dict[str, object]]:
        return (
            self._client.table(self._table)
            .select("*")
            .eq("status", status)
            .order("created_at", desc=True)
            .execute()
            .data
        )

    def list_by_company(self, company_id: str) -> list[dict[str, object]]:
        return (
            self._client.table(self._table)
            .select("*")
            .eq("company_id", company_id)
            .order("created_at", desc=True)
            .execute()
            .data
        )


class LocalObjectStorage(ObjectStorage):
    """Buckets as directories under ``<data_dir>/buckets``."""

    def __init__(self, data_dir: str, public_base_url: str = "/storage") -> None:
        self._base = Path(data_dir).resolve() / "buckets"
        self._public_base = public_base_url.rstrip("/")

    def bucket_dir(self, bucket: str) -> Path:
        return self._base / bucket

    def _path(self, bucket: str, key: str) -> Path:
        root = self.bucket_dir(bucket).resolve()
        p = (root / key).resolve()
        if root not in p.parents:
            raise StorageError(f"key escapes bucket: {key}")
        return p

    def upload(self, bucket: str, key: str, data: bytes, content_type: str, *, upsert: bool = False) -> str:
        p = self._path(bucket, key)
        if p.exists() and not upsert:
            raise StorageError(f"object already exists: {bucket}/{key}")
        p.parent.mkdir(parents=True, exist_ok=True)
        p.write_bytes(data)
        return key

    def download(self, bucket: str, key: str) -> bytes:
        p = self._path(bucket, key)
        if not p.is_file():
            raise StorageError(f"object not found: {bucket}/{key}")
        return p.read_bytes()

    def remove(self, bucket: str, keys: list[str]) -> None:
        for key in keys:
            self._path(bucket, key).unlink(missing_ok=True)

    def list_keys(self, bucket: str, directory: str) -> list[str]:
        root = self.bucket_dir(bucket).resolve()
        d = self._path(bucket, directory) if directory.strip("/") not in ("", ".") else root
        if not d.is_dir():
            return []
        return sorted(p.relative_to(root).as_posix() for p in d.rglob("*") if p.is_file())

    def public_url(self, bucket: str, key: str) -> str:
        return f"{self._public_base}/{bucket}/{key}"


class LocalFurnitureStore(FurnitureStore):
    """One JSON document per furniture row under ``<data_dir>/furniture``."""

    def __init__(self, data_dir: str) -> None:
        self._dir = Path(data_dir).resolve() / "furniture"
        self._lock = threading.RLock()

    def _doc(self, record_id: str) -> JsonFile:
        return JsonFile(self._dir / f"{record_id}.json", default=None)

    def insert(self, row: dict[str, object]) -> dict[str, object]:
        doc = self._doc(str(row["id"]))
        if doc.path.exists():
            raise StorageError(f"furniture {row['id']} already exists")
        doc.write(row)
        return dict(row)

    def get(self, record_id: str) -> dict[str, object] | None:
        if "/" in record_id or "\\" in record_id:
            return None
        return self._doc(record_id).read()

    def update(self, record_id: str, updates: dict[str, object]) -> dict[str, object]:
        with self._lock:
            row = self.get(record_id)
            if row is None:
                raise RecordNotFound(f"furniture {record_id} not found")
            row.update(updates)
            self._doc(record_id).write(row)
        return row

    def delete(self, record_id: str) -> None:
        self._doc(record_id).path.unlink(missing_ok=True)

    def _all(self) -> list[dict[str, object]]:
        if not self._dir.is_dir():
            return []
        rows = [JsonFile(p, default=None).read() for p in self._dir.glob("*.json")]
        return sorted((r for r in rows if r), key=lambda r: str(r.get("created_at", "")), reverse=True)

    def list_by_status(self, status: str) -> list[dict[str, object]]:
        return [r for r in self._all() if r.get("status") == status]

    def list_by_company(self, company_id: str) -> list[dict[str, object]]:
        return [r for r in self._all() if r.get("company_id") == company_id]
