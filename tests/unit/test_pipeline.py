"""
Unit tests for the ingestion pipeline.

Runs the pipeline against MockChain and a temporary SQLite store.
"""

import os
import tempfile
import threading
import time
from unittest.mock import MagicMock

import pytest

from jindexer.indexer.mock_chain import MockChain, post_proof_message
from jindexer.indexer.pipeline import HeightOutcome, IngestionPipeline
from jindexer.indexer.retry import RetryPolicy
from jindexer.indexer.tx_decoder import DecodedMessage
from jindexer.persistence.base import StoreError
from jindexer.persistence.sqlite_store import SQLiteProofStore

MERKLE_A = "aa" * 32
MERKLE_B = "bb" * 32


@pytest.fixture
def store():
    fd, path = tempfile.mkstemp(suffix='.db')
    os.close(fd)
    store = SQLiteProofStore(path)
    yield store
    os.unlink(path)


@pytest.fixture
def chain():
    return MockChain(head_height=0)


def make_pipeline(chain, store, **kwargs):
    kwargs.setdefault("poll_interval", 0.01)
    return IngestionPipeline(chain.reader, chain.decoder, store, **kwargs)


class TestProcessHeight:
    """Single-height behavior."""

    def test_block_saved_with_header_time(self, chain, store):
        chain.add_block(5)
        pipeline = make_pipeline(chain, store)

        assert pipeline.process_height(5) is HeightOutcome.PROCESSED
        assert store.block_exists(5)
        assert store.get_most_recent_block_height() == 5

    def test_proofs_saved_in_tx_order(self, chain, store):
        chain.add_block(5, txs=[
            chain.post_proof_tx(MERKLE_A, "jkl1a"),
            chain.post_proof_tx(MERKLE_B, "jkl1b"),
        ])
        pipeline = make_pipeline(chain, store)
        pipeline.process_height(5)

        proofs = store.list_proofs_by_id(10)
        assert [(p.merkle, p.prover) for p in reversed(proofs)] == [(MERKLE_A, "jkl1a"), (MERKLE_B, "jkl1b")]
        assert all(p.block.height == 5 for p in proofs)
        assert all(p.time == chain.time_of(5) for p in proofs)

    def test_multiple_messages_in_one_tx(self, chain, store):
        tx = chain.tx([
            post_proof_message(MERKLE_A, "jkl1a"),
            post_proof_message(MERKLE_A, "jkl1a"),
        ])
        chain.add_block(3, txs=[tx])
        make_pipeline(chain, store).process_height(3)

        assert store.get_total_proof_count() == 2

    def test_block_without_proofs_still_saved(self, chain, store):
        """A Block row is written even when nothing in it is a proof."""
        tx = chain.tx([DecodedMessage("/cosmos.bank.v1beta1.MsgSend", {"amount": []})])
        chain.add_block(4, txs=[tx])
        pipeline = make_pipeline(chain, store)

        assert pipeline.process_height(4) is HeightOutcome.PROCESSED
        assert store.block_exists(4)
        assert store.get_total_proof_count() == 0
        assert pipeline.stats.messages_ignored == 1

    def test_malformed_tx_only_loses_that_tx(self, chain, store):
        chain.add_block(6, txs=[
            chain.post_proof_tx(MERKLE_A, "jkl1a"),
            chain.malformed_tx(),
            chain.post_proof_tx(MERKLE_B, "jkl1b"),
        ])
        pipeline = make_pipeline(chain, store)

        assert pipeline.process_height(6) is HeightOutcome.PROCESSED
        assert store.get_total_proof_count() == 2
        assert pipeline.stats.decode_failures == 1
        assert pipeline.stats.txs_decoded == 2

    def test_bad_proof_message_counted(self, chain, store):
        tx = chain.tx([DecodedMessage("/canine_chain.storage.MsgPostProof", {"merkle": "AA=="})])
        chain.add_block(2, txs=[tx])
        pipeline = make_pipeline(chain, store)
        pipeline.process_height(2)

        assert pipeline.stats.message_errors == 1
        assert store.get_total_proof_count() == 0

    def test_already_indexed_height_not_refetched(self, chain, store):
        chain.add_block(7, txs=[chain.post_proof_tx(MERKLE_A, "jkl1a")])
        make_pipeline(chain, store).process_height(7)

        second = make_pipeline(chain, store)
        assert second.process_height(7) is HeightOutcome.ALREADY_INDEXED
        assert chain.reader.block_calls[7] == 1
        assert store.get_total_proof_count() == 1


class TestFailures:
    """Chain and store failures skip rather than halt."""

    def test_fetch_failure_skips_height(self, chain, store):
        chain.add_block(8)
        chain.block_failures[8] = 1
        pipeline = make_pipeline(chain, store)

        assert pipeline.process_height(8) is HeightOutcome.SKIPPED
        assert not store.block_exists(8)
        assert [s.height for s in pipeline.get_skipped_heights()] == [8]
        assert pipeline.stats.heights_skipped == 1

    def test_retry_recovers_transient_failure(self, chain, store):
        chain.add_block(8)
        chain.block_failures[8] = 2
        pipeline = make_pipeline(
            chain, store, retry_policy=RetryPolicy(max_attempts=3, base_delay=0.001, max_delay=0.001)
        )

        assert pipeline.process_height(8) is HeightOutcome.PROCESSED
        assert chain.reader.block_calls[8] == 3
        assert pipeline.get_skipped_heights() == []

    def test_head_failure_skips_height(self, chain, store):
        chain.add_block(3)
        chain.head_failures = 1
        pipeline = make_pipeline(chain, store)

        assert pipeline.process_height(3) is HeightOutcome.SKIPPED

    def test_block_save_failure_skips_height(self, chain):
        chain.add_block(3, txs=[chain.post_proof_tx(MERKLE_A, "jkl1a")])
        store = MagicMock()
        store.block_exists.return_value = False
        store.save_block.side_effect = StoreError("disk full")
        pipeline = make_pipeline(chain, store)

        assert pipeline.process_height(3) is HeightOutcome.SKIPPED
        store.save_proof.assert_not_called()

    def test_proof_save_failure_drops_only_that_proof(self, chain, store):
        chain.add_block(3, txs=[
            chain.post_proof_tx(MERKLE_A, "jkl1a"),
            chain.post_proof_tx(MERKLE_B, "jkl1b"),
        ])
        real_save = store.save_proof
        calls = []

        def flaky_save(merkle, prover, block):
            calls.append(merkle)
            if merkle == MERKLE_A:
                raise StoreError("constraint")
            return real_save(merkle, prover, block)

        store.save_proof = flaky_save
        pipeline = make_pipeline(chain, store)

        assert pipeline.process_height(3) is HeightOutcome.PROCESSED
        assert calls == [MERKLE_A, MERKLE_B]
        assert pipeline.stats.proof_write_failures == 1
        assert [p.merkle for p in store.list_proofs_by_id(10)] == [MERKLE_B]


class TestRunLoop:
    """Cursor movement, lag waiting and stop."""

    def test_range_with_end_height(self, chain, store):
        for h in range(10, 15):
            chain.add_block(h, txs=[chain.post_proof_tx(MERKLE_A, f"jkl1p{h}")])
        pipeline = make_pipeline(chain, store)

        pipeline.run(start_height=10, end_height=14)

        assert [h for h in range(10, 15) if store.block_exists(h)] == [10, 11, 12, 13]
        assert pipeline.current_height == 14
        assert not pipeline.is_running

    def test_cursor_advances_past_skipped_height(self, chain, store):
        for h in range(1, 5):
            chain.add_block(h)
        chain.block_failures[2] = 5
        pipeline = make_pipeline(chain, store)

        pipeline.run(start_height=1, end_height=5)

        assert [h for h in range(1, 5) if store.block_exists(h)] == [1, 3, 4]
        assert pipeline.get_stats()["skipped_heights"] == [2]

    def test_waits_for_head(self, chain, store):
        """Nothing is fetched while the head is behind the cursor."""
        chain.add_block(5)
        chain.head_script = [3, 4, 5]
        pipeline = make_pipeline(chain, store)

        assert pipeline.process_height(5) is HeightOutcome.PROCESSED
        assert chain.reader.head_calls == 3
        assert chain.reader.block_calls == {5: 1}

    def test_restart_is_idempotent(self, chain, store):
        for h in range(1, 4):
            chain.add_block(h, txs=[chain.post_proof_tx(MERKLE_A, "jkl1a")])

        make_pipeline(chain, store).run(start_height=1, end_height=4)
        make_pipeline(chain, store).run(start_height=1, end_height=4)

        assert store.get_total_proof_count() == 3

    def test_stop_interrupts_lag_wait(self, chain, store):
        chain.head_height = 1
        pipeline = make_pipeline(chain, store, poll_interval=30)

        worker = threading.Thread(target=pipeline.run, kwargs={"start_height": 5})
        worker.start()
        deadline = time.time() + 5
        while chain.reader.head_calls == 0 and time.time() < deadline:
            time.sleep(0.01)
        pipeline.stop()
        worker.join(timeout=5)

        assert not worker.is_alive()
        assert not store.block_exists(5)

    def test_stats_snapshot(self, chain, store):
        chain.add_block(1, txs=[chain.post_proof_tx(MERKLE_A, "jkl1a")])
        pipeline = make_pipeline(chain, store)
        pipeline.run(start_height=1, end_height=2)

        stats = pipeline.get_stats()
        assert stats["heights_processed"] == 1
        assert stats["proofs_saved"] == 1
        assert stats["last_processed_height"] == 1
        assert stats["running"] is False
