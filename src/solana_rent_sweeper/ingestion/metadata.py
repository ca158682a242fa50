"""Helius DAS metadata client and the per-mint metadata cache."""

from __future__ import annotations

from typing import Any, Dict, Iterable, List, Optional

import httpx
from cachetools import TTLCache
from solders.pubkey import Pubkey
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from ..config.settings import MetadataConfig, get_app_config
from ..datalake.schemas import MintFact, TokenMetadata
from ..monitoring.logger import get_logger
from ..monitoring.metrics import METRICS
from .onchain import TokenAccountReader

_RPC_ID = "solana-rent-sweeper"


def _parse_asset(payload: Any) -> Optional[TokenMetadata]:
    """Normalise one DAS asset object; returns ``None`` when it carries no id."""

    if not isinstance(payload, dict) or not payload.get("id"):
        return None
    content = payload.get("content") if isinstance(payload.get("content"), dict) else {}
    metadata = content.get("metadata") if isinstance(content.get("metadata"), dict) else {}
    links = content.get("links") if isinstance(content.get("links"), dict) else {}
    files = content.get("files") if isinstance(content.get("files"), list) else []
    token_info = payload.get("token_info") if isinstance(payload.get("token_info"), dict) else {}

    image = links.get("image")
    if not image and files and isinstance(files[0], dict):
        image = files[0].get("uri")
    decimals = token_info.get("decimals")
    return TokenMetadata(
        mint=str(payload["id"]),
        name=metadata.get("name") or None,
        symbol=metadata.get("symbol") or None,
        description=metadata.get("description") or None,
        image=image or None,
        decimals=int(decimals) if isinstance(decimals, int) else None,
    )


class AssetMetadataClient:
    """JSON-RPC client for the DAS ``getAssetBatch``/``getAsset`` methods."""

    def __init__(
        self,
        config: Optional[MetadataConfig] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self._config = config or get_app_config().metadata
        self._url = str(self._config.das_url) if self._config.das_url else None
        self._http = http_client or httpx.AsyncClient(timeout=self._config.http_timeout)
        self._logger = get_logger(__name__)

    @property
    def enabled(self) -> bool:
        return self._url is not None

    @retry(
        wait=wait_exponential(multiplier=1, min=1, max=10),
        stop=stop_after_attempt(3),
        retry=retry_if_exception_type(httpx.TransportError),
        reraise=True,
    )
    async def _rpc(self, method: str, params: Dict[str, Any]) -> Any:
        response = await self._http.post(
            self._url,
            json={"jsonrpc": "2.0", "id": _RPC_ID, "method": method, "params": params},
        )
        response.raise_for_status()
        payload = response.json()
        if not isinstance(payload, dict):
            raise ValueError(f"DAS {method} returned a malformed payload")
        if "error" in payload:
            raise ValueError(f"DAS {method} returned an error: {payload['error']}")
        return payload.get("result")

    async def fetch_one(self, mint: str) -> Optional[TokenMetadata]:
        if not self.enabled:
            return None
        try:
            result = await self._rpc("getAsset", {"id": mint})
        except (httpx.HTTPError, ValueError) as exc:
            self._logger.warning("Metadata lookup failed for %s: %s", mint, exc)
            return None
        return _parse_asset(result)

    async def fetch_many(self, mints: Iterable[str]) -> Dict[str, TokenMetadata]:
        """Batch lookup that falls back to one request per mint when the batch fails."""

        wanted = list(dict.fromkeys(mints))
        if not wanted or not self.enabled:
            return {}
        try:
            result = await self._rpc("getAssetBatch", {"ids": wanted})
        except (httpx.HTTPError, ValueError) as exc:
            self._logger.warning("Metadata batch of %d failed, falling back to single lookups: %s", len(wanted), exc)
            METRICS.increment("metadata.batch_failures")
            found: Dict[str, TokenMetadata] = {}
            for mint in wanted:
                item = await self.fetch_one(mint)
                if item is not None:
                    found[mint] = item
            return found
        found = {}
        for entry in result if isinstance(result, list) else []:
            item = _parse_asset(entry)
            if item is not None:
                found[item.mint] = item
        return found

    async def close(self) -> None:
        await self._http.aclose()


class MetadataCache:
    """Memoizes mint facts and DAS metadata so repeat scans skip the network.

    Only hits are cached: a mint that could not be fetched is retried on the
    next request.
    """

    def __init__(
        self,
        reader: TokenAccountReader,
        metadata_client: Optional[AssetMetadataClient] = None,
        config: Optional[MetadataConfig] = None,
    ) -> None:
        cfg = config or get_app_config().metadata
        self._reader = reader
        self._metadata_client = metadata_client
        self._mints: TTLCache[str, MintFact] = TTLCache(maxsize=cfg.cache_size, ttl=cfg.mint_cache_ttl_seconds)
        self._metadata: TTLCache[str, TokenMetadata] = TTLCache(maxsize=cfg.cache_size, ttl=cfg.cache_ttl_seconds)
        self._logger = get_logger(__name__)

    async def get_mint_facts(self, mints: Iterable[str]) -> Dict[str, MintFact]:
        result: Dict[str, MintFact] = {}
        missing: List[str] = []
        for mint in dict.fromkeys(mints):
            cached = self._mints.get(mint)
            if cached is not None:
                result[mint] = cached
            else:
                missing.append(mint)
        METRICS.increment("cache.mint.hits", len(result))
        METRICS.increment("cache.mint.misses", len(missing))
        if missing:
            fetched = await self._reader.get_mints([Pubkey.from_string(mint) for mint in missing])
            for mint, fact in fetched.items():
                self._mints[mint] = fact
                result[mint] = fact
            for mint in missing:
                if mint not in fetched:
                    self._logger.warning("Mint %s could not be fetched", mint)
        return result

    async def get_metadata(self, mints: Iterable[str]) -> Dict[str, TokenMetadata]:
        result: Dict[str, TokenMetadata] = {}
        missing: List[str] = []
        for mint in dict.fromkeys(mints):
            cached = self._metadata.get(mint)
            if cached is not None:
                result[mint] = cached
            else:
                missing.append(mint)
        METRICS.increment("cache.metadata.hits", len(result))
        if missing and self._metadata_client is not None:
            METRICS.increment("cache.metadata.misses", len(missing))
            fetched = await self._metadata_client.fetch_many(missing)
            for mint, metadata in fetched.items():
                self._metadata[mint] = metadata
                result[mint] = metadata
        return result


__all__ = ["AssetMetadataClient", "MetadataCache"]
