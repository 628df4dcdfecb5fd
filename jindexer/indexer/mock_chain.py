"""
Mock Chain for offline development and tests.

In-memory stand-ins for the RPC reader and the tx decoder that follow the same
interfaces and failure types as the real adapters.

Usage:
    chain = MockChain(head_height=10)
    chain.add_block(5, txs=[chain.post_proof_tx("ab" * 32, "jkl1prover")])
    pipeline = IngestionPipeline(chain.reader, chain.decoder, store)
"""

import base64
import itertools
from datetime import datetime, timedelta, timezone
from typing import Dict, Iterable, List, Optional

from jindexer.indexer.chain_reader import ChainBlock, ChainReadError
from jindexer.indexer.handlers import MSG_POST_PROOF
from jindexer.indexer.tx_decoder import DecodedMessage, DecodeError

GENESIS_TIME = datetime(2025, 1, 1, tzinfo=timezone.utc)
BLOCK_INTERVAL = timedelta(seconds=6)


def post_proof_message(merkle_hex: str, prover: str) -> DecodedMessage:
    """MsgPostProof as the REST decoder returns it (merkle bytes base64-encoded)."""
    return DecodedMessage(
        type_url=MSG_POST_PROOF,
        fields={
            "creator": prover,
            "item": "",
            "hash_list": [],
            "merkle": base64.b64encode(bytes.fromhex(merkle_hex)).decode("ascii"),
            "owner": "jkl1owner",
            "start": "0",
            "to_prove": "0",
        },
    )


class MockChainReader:
    """ChainReader over blocks held in memory."""

    def __init__(self, chain: "MockChain"):
        self._chain = chain
        self.head_calls = 0
        self.block_calls: Dict[int, int] = {}

    def get_head_height(self) -> int:
        self.head_calls += 1
        chain = self._chain
        if chain.head_failures > 0:
            chain.head_failures -= 1
            raise ChainReadError("mock: abci_info unavailable")
        if chain.head_script:
            chain.head_height = chain.head_script.pop(0)
        return chain.head_height

    def get_block(self, height: int) -> ChainBlock:
        self.block_calls[height] = self.block_calls.get(height, 0) + 1
        chain = self._chain
        remaining = chain.block_failures.get(height, 0)
        if remaining > 0:
            chain.block_failures[height] = remaining - 1
            raise ChainReadError(f"mock: block {height} unavailable")
        if height > chain.head_height:
            raise ChainReadError(f"mock: height {height} is not available yet")

        block = chain.blocks.get(height)
        if block is None:
            block = ChainBlock(height=height, time=chain.time_of(height), txs=[])
        return block


class MockTxDecoder:
    """MessageDecoder that looks transactions up by their bytes."""

    def __init__(self, chain: "MockChain"):
        self._chain = chain
        self.decode_calls = 0

    def decode(self, tx_bytes: bytes) -> List[DecodedMessage]:
        self.decode_calls += 1
        if tx_bytes in self._chain.malformed:
            raise DecodeError("mock: malformed transaction")
        try:
            return list(self._chain.txs[tx_bytes])
        except KeyError:
            raise DecodeError("mock: unknown transaction")


class MockChain:
    """Shared state behind MockChainReader and MockTxDecoder."""

    def __init__(
        self,
        head_height: int = 0,
        genesis_time: datetime = GENESIS_TIME,
        block_interval: timedelta = BLOCK_INTERVAL
    ):
        self.head_height = head_height
        self.genesis_time = genesis_time
        self.block_interval = block_interval

        self.blocks: Dict[int, ChainBlock] = {}
        self.txs: Dict[bytes, List[DecodedMessage]] = {}
        self.malformed = set()

        # Failure injection
        self.head_failures = 0
        self.block_failures: Dict[int, int] = {}
        self.head_script: List[int] = []

        self._tx_counter = itertools.count(1)
        self.reader = MockChainReader(self)
        self.decoder = MockTxDecoder(self)

    def time_of(self, height: int) -> datetime:
        return self.genesis_time + self.block_interval * height

    def add_block(
        self,
        height: int,
        txs: Optional[Iterable[bytes]] = None,
        time: Optional[datetime] = None
    ) -> ChainBlock:
        block = ChainBlock(
            height=height,
            time=time or self.time_of(height),
            txs=list(txs or []),
        )
        self.blocks[height] = block
        self.head_height = max(self.head_height, height)
        return block

    def tx(self, messages: Iterable[DecodedMessage]) -> bytes:
        """Register a decodable transaction and return its raw bytes."""
        raw = f"mock-tx-{next(self._tx_counter)}".encode()
        self.txs[raw] = list(messages)
        return raw

    def post_proof_tx(self, merkle_hex: str, prover: str) -> bytes:
        return self.tx([post_proof_message(merkle_hex, prover)])

    def malformed_tx(self) -> bytes:
        raw = f"mock-bad-{next(self._tx_counter)}".encode()
        self.malformed.add(raw)
        return raw
