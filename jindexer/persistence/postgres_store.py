"""
PostgreSQL Proof Store

Production ProofStore. Creates the schema on start and serves all queries
through a small thread-safe connection pool (API worker threads and the
metrics refresh thread share the store).
"""

import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Dict, Iterator, List, Optional, Sequence

import psycopg2
from psycopg2 import extras, pool

from jindexer.config import DatabaseSettings
from jindexer.persistence.base import FreshnessInputs, ProofStore, StoreError
from jindexer.types import Block, MerkleLastProof, Proof

logger = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS blocks (
    id BIGSERIAL PRIMARY KEY,
    height BIGINT NOT NULL UNIQUE,
    time TIMESTAMPTZ NOT NULL,
    created_at TIMESTAMPTZ DEFAULT CURRENT_TIMESTAMP,
    deleted_at TIMESTAMPTZ
);

CREATE INDEX IF NOT EXISTS idx_blocks_time ON blocks(time);
CREATE INDEX IF NOT EXISTS idx_blocks_deleted_at ON blocks(deleted_at);

CREATE TABLE IF NOT EXISTS proofs (
    id BIGSERIAL PRIMARY KEY,
    merkle TEXT NOT NULL,
    prover TEXT NOT NULL,
    block_id BIGINT NOT NULL REFERENCES blocks(id),
    created_at TIMESTAMPTZ DEFAULT CURRENT_TIMESTAMP,
    deleted_at TIMESTAMPTZ
);

CREATE INDEX IF NOT EXISTS idx_proofs_merkle ON proofs(merkle);
CREATE INDEX IF NOT EXISTS idx_proofs_prover ON proofs(prover);
CREATE INDEX IF NOT EXISTS idx_proofs_block_id ON proofs(block_id);
CREATE INDEX IF NOT EXISTS idx_proofs_deleted_at ON proofs(deleted_at);
"""

_PROOF_COLUMNS = """
    p.id AS proof_id, p.merkle, p.prover, p.created_at AS proof_created_at,
    b.id AS block_id, b.height, b.time, b.created_at AS block_created_at
"""


class PostgresProofStore(ProofStore):
    """psycopg2-backed append-only store."""

    def __init__(self, settings: DatabaseSettings, max_connections: int = 8):
        """Connect and create tables.

        Raises:
            StoreError: if the database is unreachable or the schema fails
        """
        self._settings = settings
        try:
            self._pool = pool.ThreadedConnectionPool(
                1,
                max_connections,
                host=settings.host,
                port=settings.port,
                dbname=settings.name,
                user=settings.user,
                password=settings.password,
                options="-c timezone=UTC",
            )
            logger.info("Database connection established")
        except psycopg2.Error as e:
            logger.error(f"Failed to connect to database: {e}")
            raise StoreError(f"failed to connect to {settings.host}:{settings.port}/{settings.name}: {e}") from e

        self.create_tables()

    @contextmanager
    def _cursor(self, readonly: bool = False) -> Iterator["extras.RealDictCursor"]:
        try:
            conn = self._pool.getconn()
        except psycopg2.Error as e:
            # PoolError when every pooled connection is checked out
            raise StoreError(f"failed to get a database connection: {e}") from e

        try:
            conn.set_session(readonly=readonly)
            with conn.cursor(cursor_factory=extras.RealDictCursor) as cursor:
                yield cursor
            conn.commit()
        except psycopg2.Error as e:
            conn.rollback()
            raise StoreError(str(e)) from e
        except Exception:
            conn.rollback()
            raise
        finally:
            self._pool.putconn(conn)

    def create_tables(self):
        """Create database tables if they don't exist."""
        with self._cursor() as cursor:
            cursor.execute(SCHEMA)
        logger.info("Tables created/verified")

    def close(self):
        self._pool.closeall()
        logger.info("Database connection closed")

    # =========================================================================
    # Row Mapping
    # =========================================================================

    @staticmethod
    def _row_to_proof(row: Dict) -> Proof:
        block = Block(
            id=row["block_id"],
            height=row["height"],
            time=row["time"],
            created_at=row["block_created_at"],
        )
        return Proof(
            id=row["proof_id"],
            merkle=row["merkle"],
            prover=row["prover"],
            block=block,
            created_at=row["proof_created_at"],
        )

    def _fetch_proofs(self, query: str, params: tuple) -> List[Proof]:
        with self._cursor(readonly=True) as cursor:
            cursor.execute(query, params)
            rows = cursor.fetchall()
        return [self._row_to_proof(row) for row in rows]

    # =========================================================================
    # Write Path
    # =========================================================================

    def save_block(self, height: int, time: datetime) -> Block:
        with self._cursor() as cursor:
            cursor.execute(
                "INSERT INTO blocks (height, time) VALUES (%s, %s) RETURNING id, created_at",
                (height, time)
            )
            row = cursor.fetchone()
        return Block(id=row["id"], height=height, time=time, created_at=row["created_at"])

    def save_proof(self, merkle: str, prover: str, block: Block) -> Proof:
        if block.id is None:
            raise StoreError(f"block {block.height} has not been saved")

        with self._cursor() as cursor:
            cursor.execute(
                "INSERT INTO proofs (merkle, prover, block_id) VALUES (%s, %s, %s) "
                "RETURNING id, created_at",
                (merkle, prover, block.id)
            )
            row = cursor.fetchone()
        return Proof(id=row["id"], merkle=merkle, prover=prover, block=block,
                     created_at=row["created_at"])

    def block_exists(self, height: int) -> bool:
        with self._cursor(readonly=True) as cursor:
            cursor.execute(
                "SELECT COUNT(*) AS n FROM blocks WHERE height = %s AND deleted_at IS NULL",
                (height,)
            )
            return cursor.fetchone()["n"] > 0

    def get_most_recent_block_height(self) -> Optional[int]:
        with self._cursor(readonly=True) as cursor:
            cursor.execute("SELECT MAX(height) AS height FROM blocks WHERE deleted_at IS NULL")
            return cursor.fetchone()["height"]

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
            WHERE p.merkle = %s
              AND b.time >= %s AND b.time <= %s
              AND p.deleted_at IS NULL AND b.deleted_at IS NULL
            ORDER BY b.time DESC, p.id DESC
        """, (merkle, start, end))

    def list_proof_times_by_merkles(
        self,
        merkles: Sequence[str],
        start: datetime,
        end: datetime
    ) -> Dict[str, List[datetime]]:
        result: Dict[str, List[datetime]] = {m: [] for m in merkles}
        if not result:
            return result

        with self._cursor(readonly=True) as cursor:
            cursor.execute("""
                SELECT p.merkle, b.time
                FROM proofs p
                INNER JOIN blocks b ON p.block_id = b.id
                WHERE p.merkle = ANY(%s)
                  AND b.time >= %s AND b.time <= %s
                  AND p.deleted_at IS NULL AND b.deleted_at IS NULL
                ORDER BY b.time ASC
            """, (list(result.keys()), start, end))
            rows = cursor.fetchall()

        for row in rows:
            result[row["merkle"]].append(row["time"])
        return result

    def list_recent_proofs(self, limit: int) -> List[Proof]:
        return self._fetch_proofs(f"""
            SELECT {_PROOF_COLUMNS}
            FROM proofs p
            INNER JOIN blocks b ON p.block_id = b.id
            WHERE p.deleted_at IS NULL AND b.deleted_at IS NULL
            ORDER BY b.time DESC, p.id DESC
            LIMIT %s
        """, (limit,))

    def list_proofs_by_id(self, limit: int) -> List[Proof]:
        return self._fetch_proofs(f"""
            SELECT {_PROOF_COLUMNS}
            FROM proofs p
            INNER JOIN blocks b ON p.block_id = b.id
            WHERE p.deleted_at IS NULL AND b.deleted_at IS NULL
            ORDER BY p.id DESC
            LIMIT %s
        """, (limit,))

    def get_merkle_last_proof_times(self) -> List[MerkleLastProof]:
        with self._cursor(readonly=True) as cursor:
            return self._last_proof_times(cursor)

    def get_total_proof_count(self) -> int:
        with self._cursor(readonly=True) as cursor:
            return self._proof_count(cursor)

    def read_freshness_inputs(self) -> FreshnessInputs:
        with self._cursor(readonly=True) as cursor:
            # One snapshot for both statements
            cursor.execute("SET TRANSACTION ISOLATION LEVEL REPEATABLE READ")
            last_proofs = self._last_proof_times(cursor)
            total = self._proof_count(cursor)
        return FreshnessInputs(last_proofs=last_proofs, total_proofs=total)

    @staticmethod
    def _last_proof_times(cursor) -> List[MerkleLastProof]:
        cursor.execute("""
            SELECT p.merkle, MAX(b.time) AS last_proof_time
            FROM proofs p
            INNER JOIN blocks b ON p.block_id = b.id
            WHERE p.deleted_at IS NULL AND b.deleted_at IS NULL
            GROUP BY p.merkle
        """)
        return [
            MerkleLastProof(merkle=row["merkle"], last_proof_time=row["last_proof_time"])
            for row in cursor.fetchall()
        ]

    @staticmethod
    def _proof_count(cursor) -> int:
        cursor.execute("SELECT COUNT(*) AS n FROM proofs WHERE deleted_at IS NULL")
        return cursor.fetchone()["n"]
