import json
import os
import threading
from pathlib import Path
from typing import Any


class JsonFile:
    """A JSON document on disk, guarded by a lock and replaced atomically on write."""

    def __init__(self, path: str | Path, default: Any) -> None:
        self._path = Path(path)
        self._default = default
        self.lock = threading.RLock()

    @property
    def path(self) -> Path:
        return self._path

    def read(self) -> Any:
        with self.lock:
            if not self._path.exists():
                return json.loads(json.dumps(self._default))
            with self._path.open("r", encoding="utf-8") as f:
                return json.load(f)

    def write(self, data: Any) -> None:
        with self.lock:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            tmp = self._path.with_name(self._path.name + ".tmp")
            with tmp.open("w", encoding="utf-8") as f:
                json.dump(data, f, ensure_ascii=False, indent=2)
            os.replace(tmp, self._path)
