from pathlib import Path
from unittest.mock import MagicMock

import pytest

from furniview.conversion import adapters
from furniview.conversion.adapters import (
    AssimpConverter,
    LocalFurnitureStore,
    LocalObjectStorage,
    SupabaseFurnitureStore,
    SupabaseObjectStorage,
)
from furniview.errors import ConversionError, RecordNotFound, StorageError


def _script(tmp_path: Path, body: str) -> str:
    # Called as: <script> export <input> <output> [extra args...]
    path = tmp_path / "fake-assimp"
    path.write_text("#!/bin/sh\n" + body + "\n", encoding="utf-8")
    path.chmod(0o755)
    return str(path)


@pytest.fixture
def model(tmp_path: Path) -> tuple[str, str]:
    src = tmp_path / "chair.obj"
    src.write_text("v 0 0 0\n", encoding="utf-8")
    return str(src), str(tmp_path / "chair.gltf")


# ---------------------------------------------------------------------------
# AssimpConverter
# ---------------------------------------------------------------------------

def test_assimp_success(tmp_path: Path, model):
    src, out = model
    AssimpConverter(_script(tmp_path, 'echo "$1 $4" > "$3"'), ["-f", "gltf2"]).convert_to_gltf(src, out)
    assert Path(out).read_text(encoding="utf-8").strip() == "export -f"


def test_assimp_stderr_on_success_is_only_a_warning(tmp_path: Path, model, caplog):
    src, out = model
    conv = AssimpConverter(_script(tmp_path, 'echo "duplicate vertices" >&2\necho "{}" > "$3"'))
    with caplog.at_level("WARNING"):
        conv.convert_to_gltf(src, out)
    assert Path(out).is_file()
    assert "duplicate vertices" in caplog.text


def test_assimp_nonzero_exit(tmp_path: Path, model):
    src, out = model
    conv = AssimpConverter(_script(tmp_path, 'echo "unknown file format" >&2\nexit 3'))
    with pytest.raises(ConversionError, match="status 3: unknown file format"):
        conv.convert_to_gltf(src, out)


def test_assimp_without_output(tmp_path: Path, model):
    src, out = model
    with pytest.raises(ConversionError, match="no output"):
        AssimpConverter(_script(tmp_path, "exit 0")).convert_to_gltf(src, out)


def test_assimp_missing_binary(tmp_path: Path, model):
    src, out = model
    with pytest.raises(ConversionError, match="not found"):
        AssimpConverter(str(tmp_path / "no-such-assimp")).convert_to_gltf(src, out)


def test_assimp_timeout(tmp_path: Path, model):
    src, out = model
    with pytest.raises(ConversionError, match="timed out"):
        AssimpConverter(_script(tmp_path, "sleep 5"), timeout_sec=1).convert_to_gltf(src, out)


# ---------------------------------------------------------------------------
# Local backend
# ---------------------------------------------------------------------------

def test_local_storage_roundtrip(tmp_path: Path):
    storage = LocalObjectStorage(str(tmp_path))
    storage.upload("gltf-files", "acme/1-chair.gltf", b"{}", "model/gltf+json")
    storage.upload("gltf-files", "acme/1-chair/1-chair.bin", b"\x00", "application/octet-stream")
    storage.upload("gltf-files", "acme/1-chair/textures/wood.png", b"\x89", "image/png")

    assert storage.download("gltf-files", "acme/1-chair.gltf") == b"{}"
    assert storage.list_keys("gltf-files", "acme/1-chair") == [
        "acme/1-chair/1-chair.bin",
        "acme/1-chair/textures/wood.png",
    ]
    assert storage.list_keys("gltf-files", "acme") == [
        "acme/1-chair.gltf",
        "acme/1-chair/1-chair.bin",
        "acme/1-chair/textures/wood.png",
    ]
    assert storage.list_keys("gltf-files", "other") == []
    assert storage.public_url("gltf-files", "acme/1-chair.gltf") == "/storage/gltf-files/acme/1-chair.gltf"

    storage.remove("gltf-files", ["acme/1-chair.gltf", "acme/missing.gltf"])
    assert "acme/1-chair.gltf" not in storage.list_keys("gltf-files", "acme")


def test_local_storage_upsert_and_escape(tmp_path: Path):
    storage = LocalObjectStorage(str(tmp_path))
    storage.upload("b", "k.obj", b"1", "model/obj")
    with pytest.raises(StorageError, match="already exists"):
        storage.upload("b", "k.obj", b"2", "model/obj")
    storage.upload("b", "k.obj", b"2", "model/obj", upsert=True)
    assert storage.download("b", "k.obj") == b"2"

    with pytest.raises(StorageError, match="escapes"):
        storage.upload("b", "../outside.obj", b"x", "model/obj")
    with pytest.raises(StorageError, match="not found"):
        storage.download("b", "missing.obj")


def test_local_furniture_store(tmp_path: Path):
    store = LocalFurnitureStore(str(tmp_path))
    old = store.insert({"id": "a", "company_id": "c1", "status": "converted", "created_at": "2024-01-01T00:00:00Z"})
    new = store.insert({"id": "b", "company_id": "c1", "status": "uploaded", "created_at": "2024-02-01T00:00:00Z"})
    store.insert({"id": "c", "company_id": "c2", "status": "converted", "created_at": "2024-03-01T00:00:00Z"})

    with pytest.raises(StorageError):
        store.insert(old)
    assert store.get("a") == old
    assert store.get("../a") is None
    assert [r["id"] for r in store.list_by_company("c1")] == [new["id"], old["id"]]
    assert [r["id"] for r in store.list_by_status("converted")] == ["c", "a"]

    assert store.update("b", {"status": "converted"})["status"] == "converted"
    with pytest.raises(RecordNotFound):
        store.update("zzz", {"status": "converted"})

    store.delete("a")
    assert store.get("a") is None


# ---------------------------------------------------------------------------
# Supabase backend
# ---------------------------------------------------------------------------

def test_supabase_storage_upload_options():
    client = MagicMock()
    bucket = client.storage.from_.return_value

    key = SupabaseObjectStorage(client).upload("gltf-files", "a/b.gltf", b"{}", "model/gltf+json", upsert=True)

    assert key == "a/b.gltf"
    client.storage.from_.assert_called_with("gltf-files")
    bucket.upload.assert_called_once_with(
        path="a/b.gltf", file=b"{}", file_options={"content-type": "model/gltf+json", "upsert": "true"}
    )


def test_supabase_storage_wraps_errors():
    client = MagicMock()
    bucket = client.storage.from_.return_value
    bucket.upload.side_effect = RuntimeError("bucket not found")
    bucket.download.side_effect = RuntimeError("object not found")
    storage = SupabaseObjectStorage(client)

    with pytest.raises(StorageError, match="bucket not found"):
        storage.upload("x", "k", b"1", "text/plain")
    with pytest.raises(StorageError, match="object not found"):
        storage.download("x", "k")


def test_supabase_storage_urls_and_removal():
    client = MagicMock()
    bucket = client.storage.from_.return_value
    bucket.get_public_url.return_value = "https://x.supabase.co/storage/v1/object/public/gltf-files/c/1-a.gltf"
    storage = SupabaseObjectStorage(client)

    assert storage.public_url("gltf-files", "c/1-a.gltf").endswith("/gltf-files/c/1-a.gltf")
    storage.remove("gltf-files", [])
    bucket.remove.assert_not_called()
    storage.remove("gltf-files", ["c/1-a.gltf"])
    bucket.remove.assert_called_once_with(["c/1-a.gltf"])


def test_supabase_storage_lists_every_page_and_folder(monkeypatch):
    monkeypatch.setattr(adapters, "LIST_PAGE_SIZE", 2)
    client = MagicMock()
    bucket = client.storage.from_.return_value
    bucket.list.side_effect = [
        [{"name": "1-a.bin", "id": "o1"}, {"name": "textures", "id": None}],
        [{"name": "1-a_0.bin", "id": "o2"}],
        [{"name": "wood.png", "id": "o3"}],
    ]

    keys = SupabaseObjectStorage(client).list_keys("gltf-files", "c/1-a/")

    assert keys == ["c/1-a/1-a.bin", "c/1-a/1-a_0.bin", "c/1-a/textures/wood.png"]
    calls = [(c.args[0], c.args[1]["limit"], c.args[1]["offset"]) for c in bucket.list.call_args_list]
    assert calls == [("c/1-a", 2, 0), ("c/1-a", 2, 2), ("c/1-a/textures", 2, 0)]
    assert bucket.list.call_args_list[0].args[1]["sortBy"] == {"column": "name", "order": "asc"}


def test_supabase_storage_listing_error():
    client = MagicMock()
    client.storage.from_.return_value.list.side_effect = RuntimeError("permission denied")
    with pytest.raises(StorageError, match="permission denied"):
        SupabaseObjectStorage(client).list_keys("gltf-files", "c")


def test_supabase_furniture_store_queries():
    client = MagicMock()
    table = client.table.return_value
    table.select.return_value.eq.return_value.execute.return_value.data = [{"id": "r1"}]
    table.select.return_value.eq.return_value.order.return_value.execute.return_value.data = [{"id": "r2"}]
    store = SupabaseFurnitureStore(client)

    assert store.get("r1") == {"id": "r1"}
    assert store.list_by_status("converted") == [{"id": "r2"}]
    client.table.assert_called_with("furniture")
    table.select.return_value.eq.assert_called_with("status", "converted")
    table.select.return_value.eq.return_value.order.assert_called_with("created_at", desc=True)


def test_supabase_furniture_store_missing_rows():
    client = MagicMock()
    table = client.table.return_value
    table.select.return_value.eq.return_value.execute.return_value.data = []
    table.update.return_value.eq.return_value.execute.return_value.data = []
    store = SupabaseFurnitureStore(client)

    assert store.get("nope") is None
    with pytest.raises(RecordNotFound):
        store.update("nope", {"status": "converted"})
