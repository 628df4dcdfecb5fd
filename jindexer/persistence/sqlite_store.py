"""
SQLite Proof Store

File-backed ProofStore for single-host deployments and tests.

Schema:
    blocks (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        height INTEGER NOT NULL UNIQUE,
        time REAL NOT NULL,          -- epoch seconds (UTC)
        created_at REAL,
        deleted_at REAL              -- soft-delete marker
    )
    proofs (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        merkle TEXT NOT NULL,
        prover TEXT NOT NULL,
        block_id INTEGER NOT NULL REFERENCES blocks(id),
        created_at REAL,
        deleted_at REAL
    )

A new connection is opened per call so the store can be shared between the
API worker threads and the metrics refresh thread.
"""

import logging
import sqlite3
import time
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from jindexer.persistence.base import FreshnessInputs, ProofStore, StoreError
from jindexer.timeutil import from_epoch, to_epoch
from jindexer.types import Block, MerkleLastProof, Proof

_PROOF_COLUMNS = """
    p.id AS proof_id, p.merkle, p.prover, p.created_at AS proof_created_at,
    b.id AS block_id, b.height, b.time, b.created_at AS block_created_at
"""


class SQLiteProofStore(ProofStore):
    """sqlite3-backed append-only store."""

    def __init__(self, db_path: str = "data/jindexer.db"):
        self.db_path = db_path
        self._logger = logging.getLogger("SQLiteProofStore")
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    def _init_db(self):
        """Initialize database schema."""
        try:
            conn = self._connect()
            try:
                conn.execute("""
                    CREATE TABLE IF NOT EXISTS blocks (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        height INTEGER NOT NULL UNIQUE,
                        time REAL NOT NULL,
                        created_at REAL,
                        deleted_at REAL
                    )
                """)
                conn.execute("""
                    CREATE TABLE IF NOT EXISTS proofs (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        merkle TEXT NOT NULL,
                        prover TEXT NOT NULL,
                        block_id INTEGER NOT NULL REFERENCES blocks(id),
                        created_at REAL,
                        deleted_at REAL
                    )
                """)

                conn.execute("CREATE INDEX IF NOT EXISTS idx_blocks_time ON blocks(time)")
                conn.execute("CREATE INDEX IF NOT EXISTS idx_proofs_merkle ON proofs(merkle)")
                conn.execute("CREATE INDEX IF NOT EXISTS idx_proofs_prover ON proofs(prover)")
                conn.execute("CREATE INDEX IF NOT EXISTS idx_proofs_block ON proofs(block_id)")
                conn.commit()
            finally:
                conn.close()
        except sqlite3.Error as e:
            raise StoreError(f"failed to initialize {self.db_path}: {e}") from e

        self._logger.info(f"Initialized proof store: {self.db_path}")

    # =========================================================================
    # Row Mapping
    # =========================================================================

    @staticmethod
    def _row_to_proof(row: sqlite3.Row) -> Proof:
        block = Block(
            id=row["block_id"],
            height=row["height"],
            time=from_epoch(row["time"]),
            created_at=from_epoch(row["block_created_at"]) if row["block_created_at"] else None,
        )
        return Proof(
            id=row["proof_id"],
            merkle=row["merkle"],
            prover=row["prover"],
            block=block,
            created_at=from_epoch(row["proof_created_at"]) if row["proof_created_at"] else None,
        )

    def _fetch_proofs(self, query: str, params: tuple) -> List[Proof]:
        try:
            conn = self._connect()
            try:
                rows = conn.execute(query, params).fetchall()
            finally:
                conn.close()
        except sqlite3.Error as e:
            raise StoreError(f"proof query failed: {e}") from e
        return [self._row_to_proof(row) for row in rows]

    # =========================================================================
    # Write Path
    # =========================================================================

    def save_block(self, height: int, time: datetime) -> Block:
        now = _now()
        try:
            conn = self._connect()
            try:
                cursor = conn.execute(
                    "INSERT INTO blocks (height, time, created_at) VALUES (?, ?, ?)",
                    (height, to_epoch(time), now)
                )
                conn.commit()
                block_id = cursor.lastrowid
            finally:
                conn.close()
        except sqlite3.Error as e:
            raise StoreError(f"failed to save block {height}: {e}") from e

        return Block(id=block_id, height=height, time=time, created_at=from_epoch(now))

    def save_proof(self, merkle: str, prover: str, block: Block) -> Proof:
        if block.id is None:
            raise StoreError(f"block {block.height} has not been saved")

        now = _now()
        try:
            conn = self._connect()
            try:
                cursor = conn.execute(
                    "INSERT INTO proofs (merkle, prover, block_id, created_at) VALUES (?, ?, ?, ?)",
                    (merkle, prover, block.id, now)
                )
                conn.commit()
                proof_id = cursor.lastrowid
            finally:
                conn.close()
        except sqlite3.Error as e:
            raise StoreError(f"failed to save proof for {merkle}: {e}") from e

        return Proof(id=proof_id, merkle=merkle, prover=prover, block=block,
                     created_at=from_epoch(now))

    def block_exists(self, height: int) -> bool:
        try:
            conn = self._connect()
            try:
                row = conn.execute(
                    "SELECT COUNT(*) FROM blocks WHERE height = ? AND deleted_at IS NULL",
                    (height,)
                ).fetchone()
            finally:
                conn.close()
        except sqlite3.Error as e:
            raise StoreError(f"block lookup failed: {e}") from e
        return row[0] > 0

    def get_most_recent_block_height(self) -> Optional[int]:
        try:
            conn = self._connect()
            try:
                row = conn.execute(
                    "SELECT MAX(height) FROM blocks WHERE deleted_at IS NULL"
                ).fetchone()
            finally:
                conn.close()
        except sqlite3.Error as e:
            raise StoreError(f"block lookup failed: {e}") from e
        return row[0]

    # =========================================================================
    # Read Path
    # =========================================================================

    def list_proofs_by_merkle_and_time_range(
        self,
        merkle: str,
        start: datetime,
        end: datetime
    ) -> List[Proof]:
        return self._fetch_proofs(f"""
            SELECT {_PROOF_COLUMNS}
            FROM proofs p
            INNER JOIN blocks b ON p.block_id = b.id
            WHERE p.merkle = ?
              AND b.time >= ? AND b.time <= ?
              AND p.deleted_at IS NULL AND b.deleted_at IS NULL
            ORDER BY b.time DESC, p.id DESC
        """, (merkle, to_epoch(start), to_epoch(end)))

    def list_proof_times_by_merkles(
        self,
        merkles: Sequence[str],
        start: datetime,
        end: datetime
    ) -> Dict[str, List[datetime]]:
        result: Dict[str, List[datetime]] = {m: [] for m in merkles}
        if not result:
            return result

        placeholders = ", ".join("?" for _ in result)
        try:
            conn = self._connect()
            try:
                rows = conn.execute(f"""
                    SELECT p.merkle, b.time
                    FROM proofs p
                    INNER JOIN blocks b ON p.block_id = b.id
                    WHERE p.merkle IN ({placeholders})
                      AND b.time >= ? AND b.time <= ?
                      AND p.deleted_at IS NULL AND b.deleted_at IS NULL
                    ORDER BY b.time ASC
                """, (*result.keys(), to_epoch(start), to_epoch(end))).fetchall()
            finally:
                conn.close()
        except sqlite3.Error as e:
            raise StoreError(f"proof time query failed: {e}") from e

        for row in rows:
            result[row["merkle"]].append(from_epoch(row["time"]))
        return result

    def list_recent_proofs(self, limit: int) -> List[Proof]:
        return self._fetch_proofs(f"""
            SELECT {_PROOF_COLUMNS}
            FROM proofs p
            INNER JOIN blocks b ON p.block_id = b.id
            WHERE p.deleted_at IS NULL AND b.deleted_at IS NULL
            ORDER BY b.time DESC, p.id DESC
            LIMIT ?
        """, (limit,))

    def list_proofs_by_id(self, limit: int) -> List[Proof]:
        return self._fetch_proofs(f"""
            SELECT {_PROOF_COLUMNS}
            FROM proofs p
            INNER JOIN blocks b ON p.block_id = b.id
            WHERE p.deleted_at IS NULL AND b.deleted_at IS NULL
            ORDER BY p.id DESC
            LIMIT ?
        """, (limit,))

    def get_merkle_last_proof_times(self) -> List[MerkleLastProof]:
        try:
            conn = self._connect()
            try:
                return self._last_proof_times(conn)
            finally:
                conn.close()
        except sqlite3.Error as e:
            raise StoreError(f"last proof query failed: {e}") from e

    def get_total_proof_count(self) -> int:
        try:
            conn = self._connect()
            try:
                return self._proof_count(conn)
            finally:
                conn.close()
        except sqlite3.Error as e:
            raise StoreError(f"proof count failed: {e}") from e

    def read_freshness_inputs(self) -> FreshnessInputs:
        try:
            conn = self._connect()
            try:
                # Both reads see the same database snapshot
                conn.execute("BEGIN")
                last_proofs = self._last_proof_times(conn)
                total = self._proof_count(conn)
                conn.commit()
            finally:
                conn.close()
        except sqlite3.Error as e:
            raise StoreError(f"freshness query failed: {e}") from e
        return FreshnessInputs(last_proofs=last_proofs, total_proofs=total)

    @staticmethod
    def _last_proof_times(conn: sqlite3.Connection) -> List[MerkleLastProof]:
        rows = conn.execute("""
            SELECT p.merkle, MAX(b.time) AS last_proof_time
            FROM proofs p
            INNER JOIN blocks b ON p.block_id = b.id
            WHERE p.deleted_at IS NULL AND b.deleted_at IS NULL
            GROUP BY p.merkle
        """).fetchall()
        return [
            MerkleLastProof(merkle=row["merkle"], last_proof_time=from_epoch(row["last_proof_time"]))
            for row in rows
        ]

    @staticmethod
    def _proof_count(conn: sqlite3.Connection) -> int:
        row = conn.execute("SELECT COUNT(*) FROM proofs WHERE deleted_at IS NULL").fetchone()
        return row[0]


def _now() -> float:
    return time.time()
