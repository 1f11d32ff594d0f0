"""Persisted session ids, keyed by wallet address."""

import json
import logging
from pathlib import Path
from typing import Dict, Optional

LOG = logging.getLogger("compact_client.store")


def session_key(address: str) -> str:
    return f"session-{address}"


class SessionStore:
    """Key/value store of ``session-<address>`` -> session id.

    Kept in memory; when ``path`` is given every change is written through
    to a JSON file so a session survives restarts.
    """

    def __init__(self, path: Optional[Path] = None):
        self.path = Path(path).expanduser().resolve() if path else None
        self._items: Dict[str, str] = {}
        if self.path and self.path.exists() and self.path.stat().st_size > 0:
            with self.path.open("r", encoding="utf-8") as f:
                loaded = json.load(f)
            if isinstance(loaded, dict):
                self._items = {str(k): str(v) for k, v in loaded.items()}
            else:
                LOG.warning("ignoring malformed session store at %s", self.path)

    def get(self, address: str) -> Optional[str]:
        return self._items.get(session_key(address))

    def set(self, address: str, session_id: str) -> None:
        self._items[session_key(address)] = session_id
        self._flush()

    def remove(self, address: str) -> None:
        if self._items.pop(session_key(address), None) is not None:
            self._flush()

    def _flush(self) -> None:
        if not self.path:
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with self.path.open("w", encoding="utf-8") as f:
            json.dump(self._items, f, indent=2, sort_keys=True)
