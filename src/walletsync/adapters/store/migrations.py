from __future__ import annotations

import hashlib
import logging
import re
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List

import psycopg
from psycopg.rows import dict_row

from walletsync.core.errors import PersistenceError

logger = logging.getLogger(__name__)

_FILE_RE = re.compile(r"^V(\d+)__(.+)\.sql$")

SCHEMA_VERSION_DDL = """
CREATE TABLE IF NOT EXISTS schema_version (
    version TEXT PRIMARY KEY,
    description TEXT NOT NULL,
    type TEXT NOT NULL DEFAULT 'SQL',
    script TEXT NOT NULL,
    checksum TEXT NOT NULL,
    installed_by TEXT,
    installed_on TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    execution_time INTEGER NOT NULL,
    success BOOLEAN NOT NULL
)
"""


@dataclass(frozen=True)
class Migration:
    version: str
    description: str
    path: Path

    @property
    def script(self) -> str:
        return self.path.name

    def checksum(self) -> str:
        return hashlib.sha256(self.path.read_bytes()).hexdigest()


def discover(migrations_dir: str) -> List[Migration]:
    p = Path(migrations_dir)
    if not p.is_dir():
        raise PersistenceError(f"Migrations directory not found: {p}")
    found = []
    for f in p.iterdir():
        m = _FILE_RE.match(f.name)
        if not m:
            continue
        found.append(Migration(version=m.group(1), description=m.group(2).replace("_", " "), path=f))
    found.sort(key=lambda m: int(m.version))
    return found


def _applied(conn: psycopg.Connection) -> Dict[str, str]:
    with conn.cursor(row_factory=dict_row) as cur:
        cur.execute("SELECT version, checksum FROM schema_version ORDER BY installed_on ASC")
        return {r["version"]: r["checksum"] for r in cur.fetchall()}


def migrate(conn: psycopg.Connection, migrations_dir: str, installed_by: str = "walletsync") -> List[str]:
    """
    Apply pending V<n>__<description>.sql files in version order.

    Each file runs in its own transaction and is recorded in schema_version
    with its checksum. An applied file whose checksum changed aborts the run.
    Returns the scripts applied by this call.
    """
    with conn.transaction():
        conn.execute(SCHEMA_VERSION_DDL)

    applied = _applied(conn)
    done: List[str] = []

    for mig in discover(migrations_dir):
        checksum = mig.checksum()
        if mig.version in applied:
            if applied[mig.version] != checksum:
                raise PersistenceError(
                    f"Checksum mismatch for migration {mig.script}. "
                    "The migration file has been modified after it was applied."
                )
            logger.info("Migration %s already applied, skipping", mig.script)
            continue

        logger.info("Executing migration %s", mig.script)
        started = time.monotonic()
        try:
            with conn.transaction():
                conn.execute(mig.path.read_text(encoding="utf-8"))
                elapsed_ms = int((time.monotonic() - started) * 1000)
                conn.execute(
                    """
                    INSERT INTO schema_version
                        (version, description, type, script, checksum, installed_by, execution_time, success)
                    VALUES (%s, %s, 'SQL', %s, %s, %s, %s, %s)
                    """,
                    (mig.version, mig.description, mig.script, checksum, installed_by, elapsed_ms, True),
                )
        except psycopg.Error as e:
            raise PersistenceError(f"Failed to apply migration {mig.script}: {e}") from e

        logger.info("Applied migration %s", mig.script)
        done.append(mig.script)

    return done
