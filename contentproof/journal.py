"""
Registration checkpoint journal.

SQLite store of in-flight ``RegistrationState`` values keyed by content hash
and mode, so an interrupted ``upload`` resumes at the failed step. Rows are
replaced after every completed step and removed on completion. The journal
is advisory: verification never reads it.
"""

import json
import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import List, Optional, Union

from .orchestrator import RegistrationState
from .util import now_epoch

DEFAULT_JOURNAL_PATH = Path.home() / ".contentproof" / "journal.db"


class RegistrationJournal:
    """
    Thread-safe SQLite checkpoint store.

    Connections are thread-local; each write is its own transaction.
    """

    def __init__(self, path: Union[str, Path, None] = None):
        self.path = Path(path) if path else DEFAULT_JOURNAL_PATH
        self._local = threading.local()
        self._init_db()

    def _get_connection(self) -> sqlite3.Connection:
        conn = getattr(self._local, "conn", None)
        if conn is None:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            conn = sqlite3.connect(str(self.path), check_same_thread=False)
            conn.execute("PRAGMA journal_mode=WAL;")
            conn.execute("PRAGMA synchronous=NORMAL;")
            conn.row_factory = sqlite3.Row
            self._local.conn = conn
        return conn

    @contextmanager
    def _transaction(self):
        """Commit on success, roll back on failure."""
        conn = self._get_connection()
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise

    def _init_db(self) -> None:
        with self._transaction() as conn:
            conn.execute("""
            CREATE TABLE IF NOT EXISTS registrations (
                content_hash TEXT NOT NULL,
                upload_content INTEGER NOT NULL,
                stage TEXT NOT NULL,
                state_json TEXT NOT NULL,
                updated_at INTEGER NOT NULL,
                PRIMARY KEY (content_hash, upload_content)
            );""")

    def save(self, state: RegistrationState) -> None:
        """Insert or replace the checkpoint for ``state``."""
        with self._transaction() as conn:
            conn.execute(
                "INSERT OR REPLACE INTO registrations"
                "(content_hash, upload_content, stage, state_json, updated_at) VALUES(?,?,?,?,?)",
                (
                    state.content_hash,
                    int(state.upload_content),
                    state.stage.value,
                    json.dumps(state.to_dict(), sort_keys=True),
                    now_epoch(),
                ),
            )

    def load(self, content_hash: str, upload_content: bool = False) -> Optional[RegistrationState]:
        conn = self._get_connection()
        row = conn.execute(
            "SELECT state_json FROM registrations WHERE content_hash=? AND upload_content=?",
            (content_hash, int(upload_content)),
        ).fetchone()
        if row is None:
            return None
        return RegistrationState.from_dict(json.loads(row["state_json"]))

    def delete(self, content_hash: str, upload_content: bool = False) -> bool:
        with self._transaction() as conn:
            cur = conn.execute(
                "DELETE FROM registrations WHERE content_hash=? AND upload_content=?",
                (content_hash, int(upload_content)),
            )
            return cur.rowcount == 1

    def pending(self) -> List[RegistrationState]:
        """All unfinished registrations, oldest first."""
        conn = self._get_connection()
        rows = conn.execute(
            "SELECT state_json FROM registrations ORDER BY updated_at ASC"
        ).fetchall()
        return [RegistrationState.from_dict(json.loads(r["state_json"])) for r in rows]

    def close(self) -> None:
        conn = getattr(self._local, "conn", None)
        if conn is not None:
            conn.close()
            self._local.conn = None
