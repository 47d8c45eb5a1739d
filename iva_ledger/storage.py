from __future__ import annotations

import copy
import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional, Protocol

logger = logging.getLogger(__name__)

DEFAULT_DATA_FILE = "iva_sv_data.json"


def _get_env(name: str) -> Optional[str]:
    value = os.getenv(name)
    return value.strip() if value else None


class Storage(Protocol):
    def load(self) -> Optional[Dict[str, Any]]:
        ...

    def save(self, snapshot: Dict[str, Any]) -> None:
        ...


class MemoryStorage:
    """Keeps the last saved snapshot in memory. Used by tests and dry runs."""

    def __init__(self, initial: Optional[Dict[str, Any]] = None):
        self._snapshot = copy.deepcopy(initial) if initial is not None else None
        self.save_count = 0

    def load(self) -> Optional[Dict[str, Any]]:
        return copy.deepcopy(self._snapshot)

    def save(self, snapshot: Dict[str, Any]) -> None:
        self._snapshot = copy.deepcopy(snapshot)
        self.save_count += 1


class JsonFileStorage:
    def __init__(self, path: str | Path):
        self.path = Path(path)

    def load(self) -> Optional[Dict[str, Any]]:
        if not self.path.exists():
            return None
        try:
            data = json.loads(self.path.read_text(encoding="utf-8-sig"))
        except ValueError as exc:
            logger.warning("Could not parse ledger data in %s: %s", self.path, exc)
            self._set_aside()
            return None
        if not isinstance(data, dict):
            logger.warning("Ledger data in %s is not an object", self.path)
            self._set_aside()
            return None
        return data

    def _set_aside(self) -> Path:
        """Rename an unusable data file so the next save starts a new one beside it."""
        kept = self.path.with_name(self.path.name + ".unreadable")
        os.replace(self.path, kept)
        logger.warning("Kept the unusable ledger file as %s", kept)
        return kept

    def save(self, snapshot: Dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_name(self.path.name + ".tmp")
        tmp_path.write_text(json.dumps(snapshot, ensure_ascii=False, indent=2), encoding="utf-8")
        os.replace(tmp_path, self.path)


def storage_from_env() -> JsonFileStorage:
    return JsonFileStorage(_get_env("IVA_LEDGER_DATA_FILE") or DEFAULT_DATA_FILE)
