"""
Provider Resolver

Resolves a storage provider's chain address to the network location (IP or
domain) it registered on chain, with a read-through in-memory cache.

Locking: lookups first read the cache without the lock. On a miss the caller
takes one lock guarding the whole cache, checks again, and fetches only if
the entry is still missing. At most one fetch is in flight at any time, and
every waiter for an address sees the entry the first fetch inserted.
"""

import logging
import threading
from dataclasses import dataclass
from typing import Dict, Optional

import requests

DEFAULT_PROVIDERS_URL = "https://api.jackalprotocol.com/jackal/canine-chain/storage/providers"


class ProviderLookupError(Exception):
    """Raised when a provider cannot be resolved."""


@dataclass(frozen=True)
class Provider:
    address: str
    ip: str


class ProviderResolver:
    """
    Cached address -> network location lookup.

    Usage:
        resolver = ProviderResolver()
        ip = resolver.get_provider_ip("jkl1...")
    """

    def __init__(
        self,
        providers_url: str = DEFAULT_PROVIDERS_URL,
        timeout: float = 30.0,
        session: Optional[requests.Session] = None
    ):
        self.providers_url = providers_url.rstrip("/")
        self.timeout = timeout
        self._session = session or requests.Session()
        self._cache: Dict[str, str] = {}
        self._lock = threading.Lock()
        self._logger = logging.getLogger("ProviderResolver")
        self.fetch_count = 0

    @classmethod
    def for_api(cls, api_url: str, timeout: float = 30.0) -> "ProviderResolver":
        """Resolver against a chain REST endpoint base URL."""
        return cls(
            providers_url=f"{api_url.rstrip('/')}/jackal/canine-chain/storage/providers",
            timeout=timeout,
        )

    def get_provider_ip(self, address: str) -> str:
        """Network location for `address`.

        Raises:
            ProviderLookupError: if the provider is unknown or the API fails
        """
        ip = self._cache.get(address)
        if ip is not None:
            return ip

        with self._lock:
            # Another caller may have filled it while we waited
            ip = self._cache.get(address)
            if ip is not None:
                return ip

            provider = self._fetch_provider(address)
            self._cache[address] = provider.ip
            if provider.address and provider.address != address:
                self._cache[provider.address] = provider.ip
            return provider.ip

    def cached(self, address: str) -> Optional[str]:
        return self._cache.get(address)

    def _fetch_provider(self, address: str) -> Provider:
        url = f"{self.providers_url}/{address}"
        self._logger.info(f"Fetching provider {address} from {url}")
        self.fetch_count += 1

        try:
            resp = self._session.get(url, timeout=self.timeout)
        except requests.RequestException as e:
            raise ProviderLookupError(f"failed to make request: {e}") from e

        if resp.status_code == 404:
            raise ProviderLookupError(f"provider not found: {address}")
        if resp.status_code != 200:
            raise ProviderLookupError(f"API returned status {resp.status_code}: {resp.text[:200]}")

        try:
            data = resp.json()["provider"]
            provider = Provider(address=data.get("address", ""), ip=data["ip"])
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            raise ProviderLookupError(f"failed to decode response: {e}") from e

        if not provider.ip:
            raise ProviderLookupError(f"provider {address} has no registered ip")

        self._logger.info(f"Fetched provider {address}: {provider.ip}")
        return provider

    def close(self):
        self._session.close()
