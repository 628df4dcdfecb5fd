"""
Starting height resolution for the indexer process.

Order: explicit configuration, then one past the newest stored block, then
the chain's current head.
"""

import logging

from jindexer.indexer.chain_reader import ChainReadError
from jindexer.persistence.base import ProofStore, StoreError

logger = logging.getLogger(__name__)


class StartHeightError(Exception):
    """No source could provide a starting height."""


def resolve_start_height(configured: int, store: ProofStore, reader) -> int:
    if configured > 0:
        logger.info(f"Starting from configured height {configured}")
        return configured

    try:
        most_recent = store.get_most_recent_block_height()
    except StoreError as e:
        logger.warning(f"Failed to get most recent block from database: {e}")
        most_recent = None

    if most_recent is not None:
        start = most_recent + 1
        logger.info(f"Starting after most recently saved block {most_recent} (height {start})")
        return start

    logger.warning("No saved blocks, falling back to current block height from RPC")
    try:
        head = reader.get_head_height()
    except ChainReadError as e:
        raise StartHeightError(f"failed to get current block height from RPC: {e}") from e

    logger.info(f"Starting from current block height {head}")
    return head
