"""Shared test doubles and builders."""

import io
import json
from pathlib import Path

from argon2 import PasswordHasher

from furniview import webapi
from furniview.auth import LocalAuth
from furniview.catalog import FurnitureCatalog
from furniview.companies import CompanyService
from furniview.companies.adapters import LocalCompanyStore
from furniview.conversion import ConversionService
from furniview.conversion.adapters import LocalFurnitureStore, LocalObjectStorage
from furniview.errors import ConversionError

ORIGINAL_BUCKET = "original-files"
GLTF_BUCKET = "gltf-files"


class FakeConverter:
    """Writes a minimal GLTF (plus optional companion files) instead of running assimp."""

    def __init__(
        self, *, fail: bool = False, companions: tuple[str, ...] = (), payload: bytes = b"\x00\x01"
    ) -> None:
        self.fail = fail
        self.companions = companions
        self.payload = payload
        self.calls: list[tuple[str, str]] = []

    def convert_to_gltf(self, input_path: str, output_path: str) -> None:
        self.calls.append((input_path, output_path))
        if self.fail:
            raise ConversionError("assimp exited with status 1: unsupported format")
        out = Path(output_path)
        doc: dict = {"asset": {"version": "2.0"}, "buffers": [], "images": []}
        for name in self.companions:
            rel = name.format(stem=out.stem)
            companion = out.parent / rel
            companion.parent.mkdir(parents=True, exist_ok=True)
            companion.write_bytes(self.payload)
            section = "buffers" if rel.endswith(".bin") else "images"
            doc[section].append({"uri": rel})
        out.write_text(json.dumps(doc), encoding="utf-8")


def chunk_reader(data: bytes):
    stream = io.BytesIO(data)

    async def read(n: int) -> bytes:
        return stream.read(n)

    return read


def bucket_files(storage: LocalObjectStorage, bucket: str) -> list[str]:
    root = storage.bucket_dir(bucket)
    if not root.exists():
        return []
    return sorted(p.relative_to(root).as_posix() for p in root.rglob("*") if p.is_file())


def cheap_hasher() -> PasswordHasher:
    return PasswordHasher(time_cost=1, memory_cost=8, parallelism=1)


def make_services(data_dir: Path, converter) -> webapi.Services:
    storage = LocalObjectStorage(str(data_dir))
    store = LocalFurnitureStore(str(data_dir))
    conversion = ConversionService(
        store,
        storage,
        converter,
        original_bucket=ORIGINAL_BUCKET,
        gltf_bucket=GLTF_BUCKET,
        workers=1,
    )
    catalog = FurnitureCatalog(store, storage, gltf_bucket=GLTF_BUCKET)
    return webapi.Services(
        conversion=conversion,
        catalog=catalog,
        company_catalog=catalog,
        companies=CompanyService(LocalCompanyStore(str(data_dir))),
        auth=LocalAuth(str(data_dir), hasher=cheap_hasher()),
    )
