"""
Snapshot store for per-machine production accumulators.
Process-local dict with SQLite write-through; one row per (machine_id, shift_start).
"""

import sqlite3
import threading
from datetime import datetime
from pathlib import Path
from typing import Optional

from schemas.production import ProductionSnapshot

_PROJECT_ROOT = Path(__file__).resolve().parent.parent


def _resolve_path(db_path: str) -> Path:
    """Resolve db_path relative to project root if not absolute."""
    p = Path(db_path)
    if p.is_absolute():
        return p
    return (_PROJECT_ROOT / db_path).resolve()


def _parse_ts(value: Optional[str]) -> Optional[datetime]:
    if value is None:
        return None
    return datetime.fromisoformat(value)


class SnapshotStore:
    """
    Holds the latest snapshot of every machine. Thread-safe via a single lock.
    Saving a snapshot for a new shift drops the machine's rows for older shifts.
    """

    def __init__(self, db_path: Optional[str] = None) -> None:
        if db_path is None:
            from config import get_settings
            db_path = get_settings().production.snapshot_store_path
        self._lock = threading.Lock()
        self._cache: dict[int, ProductionSnapshot] = {}
        if db_path == ":memory:":
            self._path = Path(":memory:")
            self._conn = sqlite3.connect(":memory:", check_same_thread=False)
        else:
            path = _resolve_path(db_path)
            path.parent.mkdir(parents=True, exist_ok=True)
            self._path = path
            self._conn = sqlite3.connect(str(path), check_same_thread=False)
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._init_schema()

    def _init_schema(self) -> None:
        with self._lock:
            self._conn.execute("""
                CREATE TABLE IF NOT EXISTS production_snapshots (
                    machine_id INTEGER NOT NULL,
                    shift_start TEXT NOT NULL,
                    accumulated_production REAL NOT NULL DEFAULT 0,
                    accumulated_running_minutes REAL NOT NULL DEFAULT 0,
                    last_estimate_at TEXT,
                    last_calculated_production REAL NOT NULL DEFAULT 0,
                    PRIMARY KEY (machine_id, shift_start)
                )
            """)
            self._conn.commit()

    def get(self, machine_id: int) -> Optional[ProductionSnapshot]:
        """Return the most recent snapshot for a machine (any shift), or None."""
        with self._lock:
            cached = self._cache.get(machine_id)
            if cached is not None:
                return cached.model_copy()
            cur = self._conn.execute(
                """SELECT machine_id, shift_start, accumulated_production,
                          accumulated_running_minutes, last_estimate_at,
                          last_calculated_production
                   FROM production_snapshots WHERE machine_id = ?
                   ORDER BY shift_start DESC LIMIT 1""",
                (machine_id,),
            )
            row = cur.fetchone()
            if row is None:
                return None
            snapshot = ProductionSnapshot(
                machine_id=row[0],
                shift_start=_parse_ts(row[1]),
                accumulated_production=row[2],
                accumulated_running_minutes=row[3],
                last_estimate_at=_parse_ts(row[4]),
                last_calculated_production=row[5],
            )
            self._cache[machine_id] = snapshot
            return snapshot.model_copy()

    def save(self, snapshot: ProductionSnapshot) -> None:
        """Write-through: update the cache and upsert the SQLite row."""
        shift_key = snapshot.shift_start.isoformat()
        last_estimate = snapshot.last_estimate_at.isoformat() if snapshot.last_estimate_at else None
        with self._lock:
            self._cache[snapshot.machine_id] = snapshot.model_copy()
            self._conn.execute(
                """INSERT INTO production_snapshots
                   (machine_id, shift_start, accumulated_production,
                    accumulated_running_minutes, last_estimate_at, last_calculated_production)
                   VALUES (?, ?, ?, ?, ?, ?)
                   ON CONFLICT(machine_id, shift_start) DO UPDATE SET
                       accumulated_production = excluded.accumulated_production,
                       accumulated_running_minutes = excluded.accumulated_running_minutes,
                       last_estimate_at = excluded.last_estimate_at,
                       last_calculated_production = excluded.last_calculated_production""",
                (
                    snapshot.machine_id,
                    shift_key,
                    snapshot.accumulated_production,
                    snapshot.accumulated_running_minutes,
                    last_estimate,
                    snapshot.last_calculated_production,
                ),
            )
            self._conn.execute(
                "DELETE FROM production_snapshots WHERE machine_id = ? AND shift_start <> ?",
                (snapshot.machine_id, shift_key),
            )
            self._conn.commit()

    def machine_ids(self) -> list[int]:
        with self._lock:
            cur = self._conn.execute("SELECT DISTINCT machine_id FROM production_snapshots")
            return [row[0] for row in cur.fetchall()]

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            self._conn.close()
