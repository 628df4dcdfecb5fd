"""
Tendermint RPC Chain Reader

Blocking access to a CometBFT/Tendermint RPC node:
- head height via /abci_info
- block header time and raw transactions via /block?height=N

Transactions are returned as raw bytes (the RPC ships them base64-encoded).
"""

import base64
import binascii
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional

import requests

from jindexer.timeutil import parse_rfc3339


class ChainReadError(Exception):
    """Raised when the node cannot be reached or returns an unusable answer."""


@dataclass(frozen=True)
class ChainBlock:
    """Block header fields the indexer needs plus raw transactions."""
    height: int
    time: datetime
    txs: List[bytes]

    @property
    def tx_count(self) -> int:
        return len(self.txs)


class TendermintRpcReader:
    """
    ChainReader over the Tendermint JSON RPC (HTTP GET form).

    Usage:
        reader = TendermintRpcReader("https://rpc.example:443")
        head = reader.get_head_height()
        block = reader.get_block(head)
    """

    def __init__(
        self,
        rpc_url: str,
        timeout: float = 30.0,
        session: Optional[requests.Session] = None
    ):
        self.rpc_url = rpc_url.rstrip("/")
        self.timeout = timeout
        self._session = session or requests.Session()
        self._logger = logging.getLogger("TendermintRpcReader")

    def _get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Dict:
        url = f"{self.rpc_url}/{path}"
        try:
            resp = self._session.get(url, params=params, timeout=self.timeout)
        except requests.RequestException as e:
            raise ChainReadError(f"request to {url} failed: {e}") from e

        if resp.status_code != 200:
            raise ChainReadError(f"{url} returned status {resp.status_code}: {resp.text[:200]}")

        try:
            body = resp.json()
        except ValueError as e:
            raise ChainReadError(f"{url} returned invalid JSON") from e

        if not isinstance(body, dict):
            raise ChainReadError(f"{url} returned an unexpected body")
        if body.get("error"):
            raise ChainReadError(f"RPC error from {url}: {body['error']}")
        if "result" not in body:
            raise ChainReadError(f"{url} response has no result")
        return body["result"]

    def get_head_height(self) -> int:
        """Current chain head (last committed block height)."""
        result = self._get("abci_info")
        try:
            return int(result["response"]["last_block_height"])
        except (KeyError, TypeError, ValueError) as e:
            raise ChainReadError(f"abci_info has no usable last_block_height: {e}") from e

    def get_block(self, height: int) -> ChainBlock:
        """Fetch header time and raw transactions of one block."""
        result = self._get("block", params={"height": height})
        try:
            block = result["block"]
            block_time = parse_rfc3339(block["header"]["time"])
            raw_txs = (block.get("data") or {}).get("txs") or []
            txs = [base64.b64decode(tx, validate=True) for tx in raw_txs]
        except (KeyError, TypeError, ValueError, binascii.Error) as e:
            raise ChainReadError(f"block {height} response is malformed: {e}") from e

        return ChainBlock(height=height, time=block_time, txs=txs)

    def close(self):
        self._session.close()
