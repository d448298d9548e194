"""
SQLite Repository

Architectural Intent:
- The only durable component of the orchestrator; everything needed to
  resume a deployment after a restart lives in one SQLite file
- Implements DeploymentRepositoryPort: deployments, pools, the production
  record and the per-service deployment queue
- Uses WAL mode so a CLI process can read (or flag a cancel) while the
  orchestrator process writes

Design Decisions:
- Single database file at configurable path (default: bluegreen.db)
- Schema is created idempotently on connect
- Aggregates stored as JSON documents next to the columns used for lookup
- Queue order is the AUTOINCREMENT id, never wall-clock time
- The per-service lease is claimed with a single conditional UPDATE, so two
  processes sharing the file cannot both hold it
"""

from __future__ import annotations
import sqlite3
import json
import logging
import time
from datetime import datetime, UTC
from typing import Optional

from bluegreen.domain.entities.deployment import Deployment, DeploymentState, TERMINAL_STATES
from bluegreen.domain.entities.descriptor import DeploymentDescriptor
from bluegreen.domain.entities.pool import Pool
from bluegreen.domain.ports.deployment_repository_port import DeploymentRepositoryPort

logger = logging.getLogger(__name__)

_TERMINAL = tuple(sorted(s.value for s in TERMINAL_STATES))
_TERMINAL_SQL = ", ".join("?" for _ in _TERMINAL)


class SQLiteRepository(DeploymentRepositoryPort):
    """Deployments, pools, production record and queue in one SQLite file."""

    def __init__(self, db_path: str = "bluegreen.db"):
        self._db_path = db_path
        self._conn: Optional[sqlite3.Connection] = None

    def connect(self) -> None:
        self._conn = sqlite3.connect(
            self._db_path,
            check_same_thread=False,
        )
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.row_factory = sqlite3.Row
        self._create_tables()
        logger.info("SQLite repository connected: %s", self._db_path)

    def close(self) -> None:
        if self._conn:
            self._conn.close()
            self._conn = None

    def _create_tables(self) -> None:
        assert self._conn is not None
        self._conn.executescript("""
            CREATE TABLE IF NOT EXISTS deployments (
                deployment_id TEXT PRIMARY KEY,
                service TEXT NOT NULL,
                artifact_version TEXT NOT NULL,
                state TEXT NOT NULL,
                started_at TEXT NOT NULL,
                finished_at TEXT,
                cancel_requested INTEGER NOT NULL DEFAULT 0,
                data TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS pools (
                pool_id TEXT PRIMARY KEY,
                service TEXT NOT NULL,
                data TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS production (
                service TEXT PRIMARY KEY,
                pool_id TEXT NOT NULL,
                updated_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS deployment_queue (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                service TEXT NOT NULL,
                descriptor_id TEXT NOT NULL,
                enqueued_at TEXT NOT NULL,
                data TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS leases (
                service TEXT PRIMARY KEY,
                owner TEXT,
                expires_at REAL NOT NULL DEFAULT 0,
                generation INTEGER NOT NULL DEFAULT 0
            );

            CREATE INDEX IF NOT EXISTS idx_deployments_service ON deployments(service, state);
            CREATE INDEX IF NOT EXISTS idx_pools_service ON pools(service);
            CREATE INDEX IF NOT EXISTS idx_queue_service ON deployment_queue(service, id);
        """)

    # -- Deployments ---------------------------------------------------------

    def save_deployment(self, deployment: Deployment) -> None:
        assert self._conn is not None
        self._conn.execute(
            """INSERT INTO deployments
               (deployment_id, service, artifact_version, state, started_at, finished_at, data)
               VALUES (?, ?, ?, ?, ?, ?, ?)
               ON CONFLICT(deployment_id) DO UPDATE SET
                   state = excluded.state,
                   finished_at = excluded.finished_at,
                   data = excluded.data""",
            (
                deployment.deployment_id,
                deployment.service,
                deployment.artifact_version,
                deployment.state.value,
                deployment.started_at.isoformat(),
                deployment.finished_at.isoformat() if deployment.finished_at else None,
                json.dumps(deployment.to_dict()),
            ),
        )
        self._conn.commit()

    def get_deployment(self, deployment_id: str) -> Optional[Deployment]:
        assert self._conn is not None
        row = self._conn.execute(
            "SELECT data FROM deployments WHERE deployment_id = ?", (deployment_id,)
        ).fetchone()
        return Deployment.from_dict(json.loads(row["data"])) if row else None

    def get_active_deployment(self, service: str) -> Optional[Deployment]:
        assert self._conn is not None
        row = self._conn.execute(
            f"""SELECT data FROM deployments
                WHERE service = ? AND state NOT IN ({_TERMINAL_SQL})
                ORDER BY started_at DESC, rowid DESC LIMIT 1""",
            (service, *_TERMINAL),
        ).fetchone()
        return Deployment.from_dict(json.loads(row["data"])) if row else None

    def latest_completed(self, service: str) -> Optional[Deployment]:
        assert self._conn is not None
        row = self._conn.execute(
            """SELECT data FROM deployments
               WHERE service = ? AND state = ?
               ORDER BY finished_at DESC, rowid DESC LIMIT 1""",
            (service, DeploymentState.COMPLETED.value),
        ).fetchone()
        return Deployment.from_dict(json.loads(row["data"])) if row else None

    def list_deployments(self, service: str, limit: int = 20) -> list[Deployment]:
        assert self._conn is not None
        rows = self._conn.execute(
            """SELECT data FROM deployments WHERE service = ?
               ORDER BY started_at DESC, rowid DESC LIMIT ?""",
            (service, limit),
        ).fetchall()
        return [Deployment.from_dict(json.loads(r["data"])) for r in rows]

    def request_cancel(self, deployment_id: str) -> bool:
        assert self._conn is not None
        cursor = self._conn.execute(
            f"""UPDATE deployments SET cancel_requested = 1
                WHERE deployment_id = ? AND state NOT IN ({_TERMINAL_SQL})""",
            (deployment_id, *_TERMINAL),
        )
        self._conn.commit()
        return cursor.rowcount > 0

    def is_cancel_requested(self, deployment_id: str) -> bool:
        assert self._conn is not None
        row = self._conn.execute(
            "SELECT cancel_requested FROM deployments WHERE deployment_id = ?",
            (deployment_id,),
        ).fetchone()
        return bool(row and row["cancel_requested"])

    # -- Pools ---------------------------------------------------------------

    def save_pool(self, pool: Pool) -> None:
        assert self._conn is not None
        self._conn.execute(
            """INSERT INTO pools (pool_id, service, data) VALUES (?, ?, ?)
               ON CONFLICT(pool_id) DO UPDATE SET data = excluded.data""",
            (pool.pool_id, pool.service, json.dumps(pool.to_dict())),
        )
        self._conn.commit()

    def list_pools(self, service: str) -> list[Pool]:
        assert self._conn is not None
        rows = self._conn.execute(
            "SELECT data FROM pools WHERE service = ? ORDER BY rowid", (service,)
        ).fetchall()
        return [Pool.from_dict(json.loads(r["data"])) for r in rows]

    def delete_pool(self, pool_id: str) -> None:
        assert self._conn is not None
        self._conn.execute("DELETE FROM pools WHERE pool_id = ?", (pool_id,))
        self._conn.commit()

    def set_production_pool(self, service: str, pool_id: str) -> None:
        assert self._conn is not None
        self._conn.execute(
            """INSERT INTO production (service, pool_id, updated_at) VALUES (?, ?, ?)
               ON CONFLICT(service) DO UPDATE SET
                   pool_id = excluded.pool_id,
                   updated_at = excluded.updated_at""",
            (service, pool_id, datetime.now(UTC).isoformat()),
        )
        self._conn.commit()

    def get_production_pool_id(self, service: str) -> Optional[str]:
        assert self._conn is not None
        row = self._conn.execute(
            "SELECT pool_id FROM production WHERE service = ?", (service,)
        ).fetchone()
        return row["pool_id"] if row else None

    # -- Queue ---------------------------------------------------------------

    def enqueue(self, descriptor: DeploymentDescriptor) -> None:
        assert self._conn is not None
        self._conn.execute(
            """INSERT INTO deployment_queue (service, descriptor_id, enqueued_at, data)
               VALUES (?, ?, ?, ?)""",
            (
                descriptor.service,
                descriptor.descriptor_id,
                datetime.now(UTC).isoformat(),
                json.dumps(descriptor.to_dict()),
            ),
        )
        self._conn.commit()

    def dequeue(self, service: str) -> Optional[DeploymentDescriptor]:
        assert self._conn is not None
        row = self._conn.execute(
            "SELECT id, data FROM deployment_queue WHERE service = ? ORDER BY id LIMIT 1",
            (service,),
        ).fetchone()
        if row is None:
            return None
        self._conn.execute("DELETE FROM deployment_queue WHERE id = ?", (row["id"],))
        self._conn.commit()
        return DeploymentDescriptor.from_dict(json.loads(row["data"]))

    def list_queue(self, service: str) -> list[DeploymentDescriptor]:
        assert self._conn is not None
        rows = self._conn.execute(
            "SELECT data FROM deployment_queue WHERE service = ? ORDER BY id", (service,)
        ).fetchall()
        return [DeploymentDescriptor.from_dict(json.loads(r["data"])) for r in rows]

    def clear_queue(self, service: str) -> list[str]:
        assert self._conn is not None
        rows = self._conn.execute(
            "SELECT id, descriptor_id FROM deployment_queue WHERE service = ? ORDER BY id",
            (service,),
        ).fetchall()
        self._conn.executemany(
            "DELETE FROM deployment_queue WHERE id = ?", [(r["id"],) for r in rows]
        )
        self._conn.commit()
        return [r["descriptor_id"] for r in rows]

    # -- Coordination lease ----------------------------------------------------

    def acquire_lease(self, service: str, owner: str, ttl_seconds: float) -> bool:
        assert self._conn is not None
        now = time.time()
        self._conn.execute(
            "INSERT INTO leases (service, owner, expires_at) VALUES (?, NULL, 0)"
            " ON CONFLICT(service) DO NOTHING",
            (service,),
        )
        cursor = self._conn.execute(
            """UPDATE leases SET
                   generation = CASE WHEN owner IS ? THEN generation ELSE generation + 1 END,
                   owner = ?,
                   expires_at = ?
               WHERE service = ? AND (owner IS NULL OR owner = ? OR expires_at < ?)""",
            (owner, owner, now + ttl_seconds, service, owner, now),
        )
        self._conn.commit()
        return cursor.rowcount > 0

    def release_lease(self, service: str, owner: str) -> None:
        assert self._conn is not None
        self._conn.execute(
            "UPDATE leases SET expires_at = 0 WHERE service = ? AND owner = ?",
            (service, owner),
        )
        self._conn.commit()

    def lease_holder(self, service: str) -> Optional[str]:
        assert self._conn is not None
        row = self._conn.execute(
            "SELECT owner FROM leases WHERE service = ? AND owner IS NOT NULL AND expires_at >= ?",
            (service, time.time()),
        ).fetchone()
        return row["owner"] if row else None

    def lease_generation(self, service: str) -> int:
        assert self._conn is not None
        row = self._conn.execute(
            "SELECT generation FROM leases WHERE service = ?", (service,)
        ).fetchone()
        return row["generation"] if row else 0
