"""Persistence collaborator.

Documents are addressed by logical key (``truth/v3``, ``drift/history``,
``audits/audit-20250101T120000``). JSON documents go through get/put; rendered
artifacts (markdown, html) go through put_text/get_text.
"""

from __future__ import annotations

import json
import logging
import os
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)


class Storage:
    """Interface for the persistence collaborator."""

    def get(self, key: str) -> Optional[Any]:
        raise NotImplementedError

    def put(self, key: str, document: Any) -> str:
        """Store a JSON-serializable document. Returns its location."""
        raise NotImplementedError

    def get_text(self, key: str) -> Optional[str]:
        raise NotImplementedError

    def put_text(self, key: str, text: str) -> str:
        """Store a rendered artifact; ``key`` includes its extension."""
        raise NotImplementedError

    def keys(self, prefix: str = "") -> List[str]:
        raise NotImplementedError


class MemoryStorage(Storage):
    """In-process storage, used for tests and embedding."""

    def __init__(self):
        self._documents: Dict[str, str] = {}
        self._texts: Dict[str, str] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            raw = self._documents.get(key)
        return json.loads(raw) if raw is not None else None

    def put(self, key: str, document: Any) -> str:
        # Serialize on write so stored documents never alias caller objects.
        raw = json.dumps(document)
        with self._lock:
            self._documents[key] = raw
        return f"memory://{key}"

    def get_text(self, key: str) -> Optional[str]:
        with self._lock:
            return self._texts.get(key)

    def put_text(self, key: str, text: str) -> str:
        with self._lock:
            self._texts[key] = text
        return f"memory://{key}"

    def keys(self, prefix: str = "") -> List[str]:
        with self._lock:
            all_keys = set(self._documents) | set(self._texts)
        return sorted(k for k in all_keys if k.startswith(prefix))


class JsonFileStorage(Storage):
    """Directory-backed storage: ``<root>/<key>.json`` and ``<root>/<key>``."""

    def __init__(self, root: Path):
        self.root = Path(root)

    def _path(self, key: str, suffix: str = "") -> Path:
        path = (self.root / f"{key}{suffix}").resolve()
        if self.root.resolve() not in path.parents:
            raise ValueError(f"Storage key escapes storage root: {key!r}")
        return path

    def _write_atomic(self, path: Path, text: str) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_name(path.name + ".tmp")
        tmp.write_text(text, encoding="utf-8")
        os.replace(tmp, path)

    def get(self, key: str) -> Optional[Any]:
        path = self._path(key, ".json")
        if not path.exists():
            return None
        return json.loads(path.read_text(encoding="utf-8"))

    def put(self, key: str, document: Any) -> str:
        path = self._path(key, ".json")
        self._write_atomic(path, json.dumps(document, indent=2))
        logger.debug("Stored %s", path)
        return str(path)

    def get_text(self, key: str) -> Optional[str]:
        path = self._path(key)
        if not path.exists():
            return None
        return path.read_text(encoding="utf-8")

    def put_text(self, key: str, text: str) -> str:
        path = self._path(key)
        self._write_atomic(path, text)
        logger.debug("Stored %s", path)
        return str(path)

    def keys(self, prefix: str = "") -> List[str]:
        if not self.root.exists():
            return []
        found = []
        for path in self.root.rglob("*"):
            if not path.is_file() or path.name.endswith(".tmp"):
                continue
            key = path.relative_to(self.root).as_posix()
            if key.endswith(".json"):
                key = key[: -len(".json")]
            if key.startswith(prefix):
                found.append(key)
        return sorted(found)
