"""
Indexed Record Types

Immutable value records shared by the indexer, the store and the read API.

- Block: one processed chain height and its header time
- Proof: one storage-proof event observed inside a Block
- MerkleLastProof: aggregate row (merkle -> newest proof time)
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Optional

from jindexer.timeutil import format_rfc3339


@dataclass(frozen=True)
class Block:
    """A processed chain height."""
    height: int
    time: datetime
    id: Optional[int] = None
    created_at: Optional[datetime] = None

    def to_dict(self) -> Dict:
        return {
            "id": self.id,
            "height": self.height,
            "time": format_rfc3339(self.time),
        }


@dataclass(frozen=True)
class Proof:
    """A proof-submission event: `prover` proved possession of `merkle` in `block`."""
    merkle: str
    prover: str
    block: Block
    id: Optional[int] = None
    created_at: Optional[datetime] = None

    @property
    def block_id(self) -> Optional[int]:
        return self.block.id

    @property
    def time(self) -> datetime:
        return self.block.time

    def to_dict(self) -> Dict:
        return {
            "id": self.id,
            "merkle": self.merkle,
            "prover": self.prover,
            "block_id": self.block_id,
            "created_at": format_rfc3339(self.created_at) if self.created_at else None,
            "block": self.block.to_dict(),
        }


@dataclass(frozen=True)
class MerkleLastProof:
    """Newest proof time observed for one merkle."""
    merkle: str
    last_proof_time: datetime
