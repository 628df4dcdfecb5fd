"""
Ingestion Pipeline

Follows the chain one height at a time and persists every recognized proof
event exactly once per occurrence.

Per height:
1. Skip heights whose Block is already stored (restart over indexed range)
2. Wait until the chain head reaches the height (poll, sleep while behind)
3. Fetch the block (header time + raw txs)
4. Save the Block before any Proof derived from it
5. Decode each tx in order; a decode failure only loses that tx
6. Dispatch each message through the handler registry; unknown kinds are ignored

The cursor advances after every height whether or not it succeeded. Chain I/O
failures that survive the retry policy skip the height; skipped heights are
logged and kept in the stats for operators.

Strictly sequential: no parallelism, no queue. stop() interrupts the
lag-wait sleep and ends run() before the next height.
"""

import logging
import threading
import time
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Deque, Dict, List, Optional

from jindexer.indexer.chain_reader import ChainReadError
from jindexer.indexer.handlers import MessageHandlerRegistry, MessageHandlingError, default_registry
from jindexer.indexer.retry import RetryPolicy
from jindexer.indexer.tx_decoder import DecodedMessage, DecodeError, tx_hash
from jindexer.persistence.base import ProofStore, StoreError
from jindexer.types import Block


class HeightOutcome(Enum):
    """Result of processing one height."""
    PROCESSED = "processed"
    ALREADY_INDEXED = "already_indexed"
    SKIPPED = "skipped"
    STOPPED = "stopped"


@dataclass(frozen=True)
class SkippedHeight:
    """A height the pipeline moved past without indexing it."""
    height: int
    reason: str
    skipped_at: float


@dataclass
class PipelineStats:
    """Counters for one pipeline instance."""
    heights_processed: int = 0
    heights_already_indexed: int = 0
    heights_skipped: int = 0
    blocks_saved: int = 0
    txs_decoded: int = 0
    decode_failures: int = 0
    messages_ignored: int = 0
    message_errors: int = 0
    proofs_saved: int = 0
    proof_write_failures: int = 0
    last_processed_height: int = 0
    start_time: float = field(default_factory=time.time)

    def to_dict(self) -> Dict:
        return {
            "heights_processed": self.heights_processed,
            "heights_already_indexed": self.heights_already_indexed,
            "heights_skipped": self.heights_skipped,
            "blocks_saved": self.blocks_saved,
            "txs_decoded": self.txs_decoded,
            "decode_failures": self.decode_failures,
            "messages_ignored": self.messages_ignored,
            "message_errors": self.message_errors,
            "proofs_saved": self.proofs_saved,
            "proof_write_failures": self.proof_write_failures,
            "last_processed_height": self.last_processed_height,
            "runtime_seconds": time.time() - self.start_time,
        }


class IngestionPipeline:
    """
    Sequential block indexer.

    Usage:
        pipeline = IngestionPipeline(reader, decoder, store)
        pipeline.run(start_height=1_000_000)              # follow the tip forever
        pipeline.run(start_height=100, end_height=200)    # heights 100..199

    `reader` needs get_head_height() and get_block(height) raising
    ChainReadError; `decoder` needs decode(tx_bytes) raising DecodeError.
    """

    DEFAULT_POLL_INTERVAL = 6.0  # seconds between head polls while the chain is behind

    def __init__(
        self,
        reader,
        decoder,
        store: ProofStore,
        registry: Optional[MessageHandlerRegistry] = None,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        retry_policy: Optional[RetryPolicy] = None,
        max_skipped_recorded: int = 1000
    ):
        self._reader = reader
        self._decoder = decoder
        self._store = store
        self._registry = registry or default_registry()
        self.poll_interval = poll_interval
        self._retry = retry_policy or RetryPolicy()
        self._logger = logging.getLogger("IngestionPipeline")

        self._stop_event = threading.Event()
        self._running = False
        self._current_height: Optional[int] = None

        self.stats = PipelineStats()
        self._skipped: Deque[SkippedHeight] = deque(maxlen=max_skipped_recorded)

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def run(self, start_height: int, end_height: Optional[int] = None):
        """Index heights from start_height up to (excluding) end_height.

        end_height of None or 0 means run until stop() is called.
        """
        self._running = True
        self._stop_event.clear()
        self._current_height = start_height

        bound = f"up to {end_height}" if end_height else "following the chain tip"
        self._logger.info(f"Starting indexer at height {start_height} ({bound})")

        try:
            while not self._stop_event.is_set():
                if end_height and self._current_height >= end_height:
                    self._logger.info(f"Reached end height {end_height}")
                    break

                outcome = self.process_height(self._current_height)
                if outcome is HeightOutcome.STOPPED:
                    break

                self._current_height += 1
        finally:
            self._running = False

        self._logger.info(f"Indexer stopped at height {self._current_height}")

    def stop(self):
        """Ask run() to return; interrupts any lag-wait or backoff sleep."""
        self._stop_event.set()

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def current_height(self) -> Optional[int]:
        return self._current_height

    def _sleep(self, seconds: float) -> bool:
        """Sleep unless stopped. Returns True if stop was requested."""
        return self._stop_event.wait(seconds)

    # =========================================================================
    # Per-Height Processing
    # =========================================================================

    def process_height(self, height: int) -> HeightOutcome:
        """Index one height. Never raises for chain, decode or store errors."""
        self._logger.info(f"Indexing block {height}...")

        try:
            if self._store.block_exists(height):
                self._logger.info(f"Block {height} already indexed, skipping")
                self.stats.heights_already_indexed += 1
                return HeightOutcome.ALREADY_INDEXED
        except StoreError as e:
            return self._skip(height, f"block lookup failed: {e}")

        try:
            if not self._wait_for_height(height):
                return HeightOutcome.STOPPED
            chain_block = self._retry.call(
                lambda: self._reader.get_block(height),
                retry_on=(ChainReadError,),
                sleep=self._sleep,
                description=f"fetch block {height}"
            )
        except ChainReadError as e:
            if self._stop_event.is_set():
                return HeightOutcome.STOPPED
            return self._skip(height, str(e))

        try:
            block = self._store.save_block(height, chain_block.time)
        except StoreError as e:
            return self._skip(height, f"failed to save block: {e}")
        self.stats.blocks_saved += 1

        for tx_bytes in chain_block.txs:
            self._process_tx(block, tx_bytes)

        self.stats.heights_processed += 1
        self.stats.last_processed_height = height
        self._logger.info(f"Indexed block {height} ({chain_block.tx_count} txs)")
        return HeightOutcome.PROCESSED

    def _wait_for_height(self, height: int) -> bool:
        """Block until the chain head is at least `height`.

        Returns False if stop() was called while waiting.

        Raises:
            ChainReadError: head query failed after all retry attempts
        """
        while True:
            head = self._retry.call(
                self._reader.get_head_height,
                retry_on=(ChainReadError,),
                sleep=self._sleep,
                description="head height query"
            )
            if head >= height:
                return True

            self._logger.info(
                f"Network is behind us (height {height}, network {head}), waiting for more blocks"
            )
            if self._sleep(self.poll_interval):
                return False

    def _skip(self, height: int, reason: str) -> HeightOutcome:
        self._logger.warning(f"Skipping height {height}: {reason}")
        self.stats.heights_skipped += 1
        self._skipped.append(SkippedHeight(height=height, reason=reason, skipped_at=time.time()))
        return HeightOutcome.SKIPPED

    # =========================================================================
    # Transactions and Messages
    # =========================================================================

    def _process_tx(self, block: Block, tx_bytes: bytes):
        txid = tx_hash(tx_bytes)
        try:
            messages = self._decoder.decode(tx_bytes)
        except DecodeError as e:
            self.stats.decode_failures += 1
            self._logger.error(f"Failed to decode tx {txid}: {e}")
            return

        self.stats.txs_decoded += 1
        for msg in messages:
            self._dispatch(msg, block)
        self._logger.debug(f"Tx parsed: {txid} ({len(messages)} messages)")

    def _dispatch(self, msg: DecodedMessage, block: Block):
        handler = self._registry.get(msg.type_url)
        if handler is None:
            self.stats.messages_ignored += 1
            self._logger.debug(f"Ignoring message {msg.type_url}")
            return

        try:
            events = handler(msg)
        except MessageHandlingError as e:
            self.stats.message_errors += 1
            self._logger.error(f"Could not process {msg.type_url} in block {block.height}: {e}")
            return

        for event in events:
            try:
                self._store.save_proof(event.merkle, event.prover, block)
                self.stats.proofs_saved += 1
            except StoreError as e:
                self.stats.proof_write_failures += 1
                self._logger.error(
                    f"Failed to save proof merkle={event.merkle} prover={event.prover} "
                    f"block={block.height}: {e}"
                )

    # =========================================================================
    # Operator Visibility
    # =========================================================================

    def get_skipped_heights(self) -> List[SkippedHeight]:
        return list(self._skipped)

    def get_stats(self) -> Dict:
        stats = self.stats.to_dict()
        stats["running"] = self._running
        stats["current_height"] = self._current_height
        stats["skipped_heights"] = [s.height for s in self._skipped]
        return stats
