"""
Message Handlers

Open dispatch table keyed by message-kind tag (type URL). The pipeline asks
the registry for a handler per decoded message; kinds nobody registered are
ignored. Adding a new proof-like message means registering one more handler.

A handler turns a DecodedMessage into zero or more ProofEvents.
"""

import base64
import binascii
import logging
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from jindexer.indexer.tx_decoder import DecodedMessage

MSG_POST_PROOF = "/canine_chain.storage.MsgPostProof"


class MessageHandlingError(Exception):
    """Raised when a recognized message lacks required fields."""


@dataclass(frozen=True)
class ProofEvent:
    """Fields of a proof to persist against the current block."""
    merkle: str
    prover: str


MessageHandler = Callable[[DecodedMessage], List[ProofEvent]]


class MessageHandlerRegistry:
    """Maps message type URLs to handlers."""

    def __init__(self):
        self._handlers: Dict[str, MessageHandler] = {}
        self._logger = logging.getLogger("MessageHandlerRegistry")

    def register(self, type_url: str, handler: MessageHandler):
        """Register (or replace) the handler for a message kind."""
        if type_url in self._handlers:
            self._logger.warning(f"Replacing handler for {type_url}")
        self._handlers[type_url] = handler

    def get(self, type_url: str) -> Optional[MessageHandler]:
        return self._handlers.get(type_url)

    def __contains__(self, type_url: str) -> bool:
        return type_url in self._handlers

    @property
    def kinds(self) -> List[str]:
        return sorted(self._handlers)


def merkle_to_hex(value: str) -> str:
    """Proto `bytes` fields arrive base64-encoded; merkles are stored as hex."""
    try:
        return base64.b64decode(value, validate=True).hex()
    except (binascii.Error, ValueError, TypeError) as e:
        raise MessageHandlingError(f"merkle is not valid base64: {e}") from e


def handle_post_proof(msg: DecodedMessage) -> List[ProofEvent]:
    """MsgPostProof: `creator` proved possession of `merkle`."""
    prover = msg.fields.get("creator")
    merkle = msg.fields.get("merkle")
    if not prover or not merkle:
        raise MessageHandlingError(f"{msg.type_url} is missing creator or merkle")

    return [ProofEvent(merkle=merkle_to_hex(merkle), prover=prover)]


def default_registry() -> MessageHandlerRegistry:
    """Registry with every proof-submission kind the indexer understands."""
    registry = MessageHandlerRegistry()
    registry.register(MSG_POST_PROOF, handle_post_proof)
    return registry
