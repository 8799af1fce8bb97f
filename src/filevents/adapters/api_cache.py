from __future__ import annotations
import os, json
from typing import Any


class JSONFileCache:
    """
    Permanent on-disk cache for RPC results scoped to finalized chain state.
    One JSON document per key; entries are never invalidated.
    """
    def __init__(self, root_dir: str) -> None:
        self.root = root_dir
        os.makedirs(self.root, exist_ok=True)

    def _path(self, key: str) -> str:
        return os.path.join(self.root, f"{key}.json")

    def get(self, key: str) -> tuple[bool, Any]:
        path = self._path(key)
        if not os.path.exists(path):
            return False, None
        with open(path, "r") as f:
            return True, json.load(f)

    def put(self, key: str, value: Any) -> None:
        path = self._path(key)
        tmp = path + ".tmp"
        with open(tmp, "w") as f:
            json.dump(value, f, separators=(",", ":"))
        os.replace(tmp, path)
