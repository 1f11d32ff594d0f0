"""Client configuration loaded from the environment."""

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

DEFAULT_INDEXER_URL = "https://the-compact-indexer-2.ponder-dev.com/"

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"


def _get_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    return int(raw) if raw is not None and raw != "" else default


def _get_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    return float(raw) if raw is not None and raw != "" else default


@dataclass
class ClientConfig:
    allocator_url: str = "http://localhost:3000"
    indexer_url: str = DEFAULT_INDEXER_URL
    request_timeout: float = 30.0

    # Polling
    balance_poll_interval: float = 1.0
    indexer_poll_interval: float = 1.01
    withdrawal_tick_interval: float = 1.0
    session_revalidate_interval: float = 60.0
    network_switch_settle_seconds: float = 1.0

    # Allocation limits
    max_expiry_seconds: int = 7200
    default_expiry_seconds: int = 600

    # Persistence / caching
    session_store_path: str = ""
    query_cache_max_entries: int = 0

    log_level: str = "INFO"

    @property
    def session_store_path_abs(self) -> Optional[Path]:
        if not self.session_store_path:
            return None
        return Path(self.session_store_path).expanduser().resolve()


def load_config(dotenv_path: Optional[str] = None) -> ClientConfig:
    load_dotenv(dotenv_path)
    return ClientConfig(
        allocator_url=os.getenv("COMPACT_ALLOCATOR_URL", "http://localhost:3000").strip(),
        indexer_url=os.getenv("COMPACT_INDEXER_URL", DEFAULT_INDEXER_URL).strip(),
        request_timeout=_get_float("COMPACT_REQUEST_TIMEOUT", 30.0),
        balance_poll_interval=_get_float("COMPACT_BALANCE_POLL_INTERVAL", 1.0),
        indexer_poll_interval=_get_float("COMPACT_INDEXER_POLL_INTERVAL", 1.01),
        withdrawal_tick_interval=_get_float("COMPACT_WITHDRAWAL_TICK_INTERVAL", 1.0),
        session_revalidate_interval=_get_float("COMPACT_SESSION_REVALIDATE_INTERVAL", 60.0),
        network_switch_settle_seconds=_get_float("COMPACT_NETWORK_SWITCH_SETTLE_SECONDS", 1.0),
        max_expiry_seconds=_get_int("COMPACT_MAX_EXPIRY_SECONDS", 7200),
        default_expiry_seconds=_get_int("COMPACT_DEFAULT_EXPIRY_SECONDS", 600),
        session_store_path=os.getenv("COMPACT_SESSION_STORE_PATH", ""),
        query_cache_max_entries=_get_int("COMPACT_QUERY_CACHE_MAX_ENTRIES", 0),
        log_level=os.getenv("COMPACT_LOG_LEVEL", "INFO").strip().upper(),
    )


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO), format=LOG_FORMAT)
