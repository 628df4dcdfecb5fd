"""
Transaction Decoder

Turns raw transaction bytes into the ordered list of typed messages they
carry. Decoding is delegated to the chain's REST gateway
(POST /cosmos/tx/v1beta1/decode), which knows every registered message type
and returns each message as JSON tagged with its "@type" URL.
"""

import base64
import hashlib
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import requests


class DecodeError(Exception):
    """Raised when one transaction cannot be decoded."""


@dataclass(frozen=True)
class DecodedMessage:
    """One message of a transaction: its kind tag and its fields."""
    type_url: str
    fields: Dict[str, Any] = field(default_factory=dict)


def tx_hash(tx_bytes: bytes) -> str:
    """Tendermint transaction hash (upper-case hex SHA-256)."""
    return hashlib.sha256(tx_bytes).hexdigest().upper()


class RestTxDecoder:
    """
    MessageDecoder backed by the Cosmos SDK REST decode endpoint.

    Usage:
        decoder = RestTxDecoder("https://api.example")
        for msg in decoder.decode(tx_bytes):
            print(msg.type_url)
    """

    DECODE_PATH = "cosmos/tx/v1beta1/decode"

    def __init__(
        self,
        api_url: str,
        timeout: float = 30.0,
        session: Optional[requests.Session] = None
    ):
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout
        self._session = session or requests.Session()
        self._logger = logging.getLogger("RestTxDecoder")

    def decode(self, tx_bytes: bytes) -> List[DecodedMessage]:
        """Decode one transaction.

        Raises:
            DecodeError: on any failure; the caller skips this transaction only
        """
        url = f"{self.api_url}/{self.DECODE_PATH}"
        payload = {"tx_bytes": base64.b64encode(tx_bytes).decode("ascii")}

        try:
            resp = self._session.post(url, json=payload, timeout=self.timeout)
        except requests.RequestException as e:
            raise DecodeError(f"decode request failed: {e}") from e

        if resp.status_code != 200:
            raise DecodeError(f"decode returned status {resp.status_code}: {resp.text[:200]}")

        try:
            body = resp.json()
            messages = body["tx"]["body"].get("messages") or []
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            raise DecodeError(f"decode response is malformed: {e}") from e

        decoded = []
        for i, msg in enumerate(messages):
            if not isinstance(msg, dict) or "@type" not in msg:
                raise DecodeError(f"message {i} has no @type")
            fields = {k: v for k, v in msg.items() if k != "@type"}
            decoded.append(DecodedMessage(type_url=msg["@type"], fields=fields))
        return decoded

    def close(self):
        self._session.close()
