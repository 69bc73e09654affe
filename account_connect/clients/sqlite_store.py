"""SQLite-backed record storage keyed by (pk, sk), mirroring the DynamoDB layout."""

from __future__ import annotations

import json
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterator, Optional

from account_connect.core.errors import StorageUnavailableError


class SQLiteStore:
    """Simple key-value store using a normalized table keyed by (pk, sk).

    Each row carries a ``version`` column so callers can perform a
    compare-and-set without reading the JSON payload back.
    """

    def __init__(self, db_path: str, *, table_name: str = "kv_records") -> None:
        if not table_name.isidentifier():
            raise ValueError(f"Invalid table name: {table_name!r}")
        self._table = table_name
        self._db_path = Path(db_path)
        if self._db_path.parent and not self._db_path.parent.exists():
            self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._ensure_schema()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path, check_same_thread=False, timeout=5.0)
        conn.row_factory = sqlite3.Row
        return conn

    @contextmanager
    def _session(self) -> Iterator[sqlite3.Connection]:
        try:
            conn = self._connect()
        except sqlite3.Error as exc:
            raise StorageUnavailableError("Token storage is unavailable.") from exc
        try:
            with conn:
                yield conn
        except sqlite3.Error as exc:
            raise StorageUnavailableError("Token storage is unavailable.") from exc
        finally:
            conn.close()

    def _ensure_schema(self) -> None:
        with self._session() as conn:
            conn.execute(
                f"""
                CREATE TABLE IF NOT EXISTS {self._table} (
                    pk TEXT NOT NULL,
                    sk TEXT NOT NULL,
                    data TEXT NOT NULL,
                    version INTEGER NOT NULL DEFAULT 0,
                    PRIMARY KEY (pk, sk)
                )
                """
            )

    @staticmethod
    def _keys(item: Dict[str, Any]) -> tuple[str, str]:
        pk = item.get("pk")
        sk = item.get("sk")
        if not pk or not sk:
            raise ValueError("Item must include 'pk' and 'sk' keys")
        return pk, sk

    def put_item(self, item: Dict[str, Any]) -> None:
        pk, sk = self._keys(item)
        data_json = json.dumps(item)
        with self._session() as conn:
            conn.execute(
                f"""
                INSERT INTO {self._table} (pk, sk, data, version)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(pk, sk) DO UPDATE SET
                    data = excluded.data,
                    version = excluded.version
                """,
                (pk, sk, data_json, int(item.get("version", 0))),
            )

    def put_item_if_version(self, item: Dict[str, Any], *, expected_version: int) -> bool:
        """Overwrite an existing row only if its version is still ``expected_version``."""
        pk, sk = self._keys(item)
        data_json = json.dumps(item)
        with self._session() as conn:
            cursor = conn.execute(
                f"""
                UPDATE {self._table}
                SET data = ?, version = ?
                WHERE pk = ? AND sk = ? AND version = ?
                """,
                (data_json, int(item.get("version", 0)), pk, sk, expected_version),
            )
            return cursor.rowcount == 1

    def get_item(
        self, *, partition_key: str, sort_key: str
    ) -> Optional[Dict[str, Any]]:
        with self._session() as conn:
            row = conn.execute(
                f"SELECT data FROM {self._table} WHERE pk = ? AND sk = ?",
                (partition_key, sort_key),
            ).fetchone()
        if not row:
            return None
        return json.loads(row["data"])

    def delete_item(self, *, partition_key: str, sort_key: str) -> None:
        with self._session() as conn:
            conn.execute(
                f"DELETE FROM {self._table} WHERE pk = ? AND sk = ?",
                (partition_key, sort_key),
            )

    def pop_item(
        self, *, partition_key: str, sort_key: str
    ) -> Optional[Dict[str, Any]]:
        """Atomically read and delete a row; only one caller ever gets it."""
        with self._session() as conn:
            conn.execute("BEGIN IMMEDIATE")
            row = conn.execute(
                f"SELECT data FROM {self._table} WHERE pk = ? AND sk = ?",
                (partition_key, sort_key),
            ).fetchone()
            if row:
                conn.execute(
                    f"DELETE FROM {self._table} WHERE pk = ? AND sk = ?",
                    (partition_key, sort_key),
                )
        if not row:
            return None
        return json.loads(row["data"])

    def purge_expired(self, *, partition_prefix: str, now_epoch: int) -> int:
        """Delete rows under ``partition_prefix`` whose ``expires_at`` has passed."""
        with self._session() as conn:
            cursor = conn.execute(
                f"""
                DELETE FROM {self._table}
                WHERE substr(pk, 1, ?) = ?
                  AND json_extract(data, '$.expires_at') IS NOT NULL
                  AND json_extract(data, '$.expires_at') <= ?
                """,
                (len(partition_prefix), partition_prefix, now_epoch),
            )
            return cursor.rowcount


__all__ = ["SQLiteStore"]
