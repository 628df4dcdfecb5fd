"""
Jackal Proof Indexer

Follows the chain and records every proof-submission message.

Components:
- TendermintRpcReader: head height and blocks from the RPC node
- RestTxDecoder: raw tx bytes -> typed messages
- MessageHandlerRegistry: message kind -> proof extraction
- IngestionPipeline: sequential height/tx/message loop
"""

from .chain_reader import ChainBlock, ChainReadError, TendermintRpcReader
from .tx_decoder import DecodedMessage, DecodeError, RestTxDecoder
from .handlers import (
    MSG_POST_PROOF,
    MessageHandlerRegistry,
    MessageHandlingError,
    ProofEvent,
    default_registry,
)
from .retry import RetryPolicy
from .pipeline import HeightOutcome, IngestionPipeline, PipelineStats, SkippedHeight
from .start_height import StartHeightError, resolve_start_height

__all__ = [
    "ChainBlock",
    "ChainReadError",
    "TendermintRpcReader",
    "DecodedMessage",
    "DecodeError",
    "RestTxDecoder",
    "MSG_POST_PROOF",
    "MessageHandlerRegistry",
    "MessageHandlingError",
    "ProofEvent",
    "default_registry",
    "RetryPolicy",
    "HeightOutcome",
    "IngestionPipeline",
    "PipelineStats",
    "SkippedHeight",
    "StartHeightError",
    "resolve_start_height",
]
