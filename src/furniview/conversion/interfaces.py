from dataclasses import dataclass
from pathlib import Path
from typing import Protocol


class ConverterGateway(Protocol):
    def convert_to_gltf(self, input_path: str, output_path: str) -> None:
        """Convert the model at input_path into a GLTF file at output_path.

        This is a blocking call; callers should offload to threads if needed.
        Companion files (buffers, textures) may be written next to output_path.
        """


class ObjectStorage(Protocol):
    def upload(self, bucket: str, key: str, data: bytes, content_type: str, *, upsert: bool = False) -> str:
        ...

    def download(self, bucket: str, key: str) -> bytes:
        ...

    def remove(self, bucket: str, keys: list[str]) -> None:
        ...

    def list_keys(self, bucket: str, directory: str) -> list[str]:
        """Keys of every object below directory, at any depth."""

    def public_url(self, bucket: str, key: str) -> str:
        ...


class FurnitureStore(Protocol):
    def insert(self, row: dict[str, object]) -> dict[str, object]:
        ...

    def get(self, record_id: str) -> dict[str, object] | None:
        ...

    def update(self, record_id: str, updates: dict[str, object]) -> dict[str, object]:
        """Apply updates and return the stored row; RecordNotFound if missing."""

    def delete(self, record_id: str) -> None:
        ...

    def list_by_status(self, status: str) -> list[dict[str, object]]:
        """Rows with the given status, newest first."""

    def list_by_company(self, company_id: str) -> list[dict[str, object]]:
        """Rows owned by the company, newest first."""


@dataclass(frozen=True)
class ConversionPaths:
    work_dir: str
    input_dir: str
    output_dir: str
    input_path: str
    output_path: str

    @classmethod
    def for_key(cls, work_dir: str, original_key: str) -> "ConversionPaths":
        base = Path(work_dir)
        name = original_key.rsplit("/", 1)[-1]
        input_dir = base / "input"
        output_dir = base / "output"
        for d in (input_dir, output_dir):
            d.mkdir(parents=True, exist_ok=True)
        return cls(
            work_dir=str(base),
            input_dir=str(input_dir),
            output_dir=str(output_dir),
            input_path=str(input_dir / name),
            output_path=str(output_dir / f"{Path(name).stem}.gltf"),
        )
