# infrastructure/persistence.py

from __future__ import annotations

import json
import os
import tempfile
from typing import Any, Dict, Iterable, List, Optional

from .logger import get_logger

logger = get_logger(__name__)


def _ensure_parent_dir(path: str) -> str:
    parent = os.path.dirname(os.path.abspath(path)) or "."
    os.makedirs(parent, exist_ok=True)
    return parent


def _atomic_write_bytes(path: str, data: bytes) -> None:
    """Write data next to path under a temp name, fsync, then os.replace onto path."""
    fd, tmp_path = tempfile.mkstemp(prefix=".tmp_", dir=_ensure_parent_dir(path))
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, path)
    except BaseException:
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        raise


def to_jsonable(x: Any) -> Any:
    """Snapshot and journal values: dict keys become str, tuples become lists."""
    if isinstance(x, dict):
        return {str(k): to_jsonable(v) for k, v in x.items()}
    if isinstance(x, (list, tuple)):
        return [to_jsonable(v) for v in x]
    return x


def atomic_write_json(path: str, obj: Dict[str, Any]) -> None:
    text = json.dumps(to_jsonable(obj), ensure_ascii=False, indent=2, sort_keys=True)
    _atomic_write_bytes(path, text.encode("utf-8"))


def read_json(path: str) -> Dict[str, Any]:
    with open(path, encoding="utf-8") as f:
        return json.load(f)


def atomic_write_jsonl(path: str, records: Iterable[Dict[str, Any]]) -> None:
    """One compact JSON object per line; the whole file is replaced at once."""
    text = "".join(
        json.dumps(to_jsonable(r), ensure_ascii=False, separators=(",", ":")) + "\n" for r in records
    )
    _atomic_write_bytes(path, text.encode("utf-8"))


def read_jsonl(path: str) -> List[Dict[str, Any]]:
    with open(path, encoding="utf-8") as f:
        return [json.loads(line) for line in f if line.strip()]


class SnapshotStore:
    """
    Market snapshot file with bounded backup rotation.

    save() shifts path.1 -> path.2 ... (dropping anything past backup_count),
    moves the current file to path.1 and writes the new snapshot atomically.
    load() falls back to the newest readable backup when the main file is
    missing or corrupt.
    """

    def __init__(self, path: str, backup_count: int = 5):
        if backup_count < 0:
            raise ValueError("backup_count must be >= 0")
        self.path = path
        self.backup_count = backup_count

    def backup_path(self, n: int) -> str:
        return f"{self.path}.{n}"

    def _rotate(self) -> None:
        if not os.path.exists(self.path):
            return
        if self.backup_count == 0:
            return
        for n in range(self.backup_count - 1, 0, -1):
            src = self.backup_path(n)
            if os.path.exists(src):
                os.replace(src, self.backup_path(n + 1))
        os.replace(self.path, self.backup_path(1))

    def save(self, snapshot: Dict[str, Any]) -> None:
        _ensure_parent_dir(self.path)
        self._rotate()
        atomic_write_json(self.path, snapshot)
        logger.info(
            "Snapshot saved to %s: %d markets, %d users",
            self.path,
            len(snapshot.get("markets", {})),
            len(snapshot.get("userBalances", {})),
        )

    def backups(self) -> List[str]:
        return [
            self.backup_path(n)
            for n in range(1, self.backup_count + 1)
            if os.path.exists(self.backup_path(n))
        ]

    def load(self) -> Optional[Dict[str, Any]]:
        for candidate in [self.path] + self.backups():
            if not os.path.exists(candidate):
                continue
            try:
                data = read_json(candidate)
            except (OSError, ValueError) as e:
                logger.warning("Unreadable snapshot %s: %s", candidate, e)
                continue
            if candidate != self.path:
                logger.warning("Loaded snapshot from backup %s", candidate)
            return data
        return None
