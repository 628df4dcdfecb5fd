"""
Proof Store Interface

Narrow repository for the append-only audit log. Exposes exactly the query
shapes the indexer, the report engine and the metrics aggregator need, and
returns immutable value records from jindexer.types.

Storage rules:
- blocks.height is unique; Block rows are never updated or deleted
- every Proof references an existing Block
- rows carry created_at and a deleted_at soft-delete marker; reads skip
  soft-deleted rows
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List, Optional, Sequence

from jindexer.types import Block, MerkleLastProof, Proof


class StoreError(Exception):
    """Raised when the underlying database rejects or fails an operation."""


@dataclass(frozen=True)
class FreshnessInputs:
    """Store state read inside a single transaction for one metrics cycle."""
    last_proofs: List[MerkleLastProof]
    total_proofs: int


class ProofStore(ABC):
    """Append-only storage for Block and Proof records."""

    # =========================================================================
    # Write path (IngestionPipeline only)
    # =========================================================================

    @abstractmethod
    def save_block(self, height: int, time: datetime) -> Block:
        """Insert a Block and return it with its assigned id."""

    @abstractmethod
    def save_proof(self, merkle: str, prover: str, block: Block) -> Proof:
        """Insert a Proof referencing an already saved Block."""

    @abstractmethod
    def block_exists(self, height: int) -> bool:
        """True if a Block for this height has been saved before."""

    @abstractmethod
    def get_most_recent_block_height(self) -> Optional[int]:
        """Highest saved block height, or None when the store is empty."""

    # =========================================================================
    # Read path
    # =========================================================================

    @abstractmethod
    def list_proofs_by_merkle_and_time_range(
        self,
        merkle: str,
        start: datetime,
        end: datetime
    ) -> List[Proof]:
        """Proofs for a merkle with start <= block time <= end, newest first."""

    @abstractmethod
    def list_proof_times_by_merkles(
        self,
        merkles: Sequence[str],
        start: datetime,
        end: datetime
    ) -> Dict[str, List[datetime]]:
        """Block times of proofs per merkle with start <= time <= end.

        Every requested merkle is present in the result, possibly with an
        empty list.
        """

    @abstractmethod
    def list_recent_proofs(self, limit: int) -> List[Proof]:
        """Most recent proofs by block time."""

    @abstractmethod
    def list_proofs_by_id(self, limit: int) -> List[Proof]:
        """Most recent proofs by insertion order."""

    @abstractmethod
    def get_merkle_last_proof_times(self) -> List[MerkleLastProof]:
        """MAX(block time) per merkle, computed by the database."""

    @abstractmethod
    def get_total_proof_count(self) -> int:
        """Total number of proofs across all merkles."""

    @abstractmethod
    def read_freshness_inputs(self) -> FreshnessInputs:
        """Per-merkle last proof times and total count from one snapshot."""

    def close(self):
        """Release connections held by the store."""
