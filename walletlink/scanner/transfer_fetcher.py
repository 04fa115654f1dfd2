"""
Incremental transfer-history harvesting for known addresses.

A scan unit is one (address, chain) pair. For each unit the fetcher reads the
stored block cursor, pages through the provider's history from that block,
stores every transfer idempotently and finally advances the cursor to the
highest block seen (never backwards).

Providers:
- Alchemy alchemy_getAssetTransfers (ethereum, base, polygon): external + erc20,
  ascending block order, pageKey cursor, queried once per direction (from / to).
- Helius enhanced transactions (solana): newest first, `before` signature
  cursor; the slot plays the role of the block number.

Rate limits (429), timeouts, transport errors and 5xx are retried with
exponential backoff; other 4xx and JSON-RPC errors abort the unit at once.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Protocol

import httpx

from walletlink.config.env import (
    HELIUS_API_BASE,
    get_alchemy_url,
    get_helius_api_key,
    mask_api_key,
)
from walletlink.config.settings import Settings
from walletlink.core.exceptions import ExternalApiError, RateLimitedError
from walletlink.database import Database, DerivedAddress, TransferRecord
from walletlink.database.models import CHAIN_TYPE_EVM, CHAIN_TYPE_SOLANA, normalize_address
from walletlink.walletlink_logging import get_logger, short_address

logger = get_logger(__name__)

ALCHEMY_CATEGORIES = ["external", "erc20"]
ALCHEMY_MAX_COUNT = "0x3e8"
USDC_MINT = "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v"
LAMPORTS_PER_SOL = 1e9

SleepFn = Callable[[float], Awaitable[Any]]


@dataclass
class TransferPage:
    transfers: list[TransferRecord] = field(default_factory=list)
    next_cursor: str | None = None


class TransferSource(Protocol):
    """Provider adapter: builds one page request and parses its payload."""

    name: str
    chain: str
    chain_type: str
    directions: tuple[str | None, ...]

    def build_request(
        self,
        client: httpx.AsyncClient,
        address: str,
        direction: str | None,
        from_block: int,
        cursor: str | None,
    ) -> httpx.Request: ...

    def parse_page(self, payload: Any, from_block: int) -> TransferPage: ...


class AlchemyTransferSource:
    name = "alchemy"
    chain_type = CHAIN_TYPE_EVM
    directions: tuple[str | None, ...] = ("from", "to")

    def __init__(self, chain: str, rpc_url: str) -> None:
        self.chain = chain
        self._rpc_url = rpc_url

    def __repr__(self) -> str:
        return f"AlchemyTransferSource({self.chain!r}, {mask_api_key(self._rpc_url)!r})"

    def build_request(
        self,
        client: httpx.AsyncClient,
        address: str,
        direction: str | None,
        from_block: int,
        cursor: str | None,
    ) -> httpx.Request:
        params: dict[str, Any] = {
            "category": ALCHEMY_CATEGORIES,
            "maxCount": ALCHEMY_MAX_COUNT,
            "withMetadata": False,
            "order": "asc",
        }
        if direction == "from":
            params["fromAddress"] = address
        else:
            params["toAddress"] = address
        if from_block > 0:
            params["fromBlock"] = hex(from_block)
        if cursor:
            params["pageKey"] = cursor
        body = {"jsonrpc": "2.0", "id": 1, "method": "alchemy_getAssetTransfers", "params": [params]}
        return client.build_request("POST", self._rpc_url, json=body)

    def parse_page(self, payload: Any, from_block: int) -> TransferPage:
        if not isinstance(payload, dict):
            raise ExternalApiError("alchemy: unexpected response shape")
        if payload.get("error"):
            err = payload["error"]
            message = err.get("message", err) if isinstance(err, dict) else err
            raise ExternalApiError(f"alchemy error: {message}")
        result = payload.get("result") or {}
        page = TransferPage(next_cursor=result.get("pageKey") or None)
        for t in result.get("transfers") or []:
            if not t.get("from") or not t.get("to") or not t.get("hash"):
                continue
            token = t.get("asset") or ("ETH" if t.get("category") == "external" else "UNKNOWN")
            try:
                block = int(t.get("blockNum") or "0x0", 16)
            except ValueError:
                block = None
            value = t.get("value")
            page.transfers.append(
                TransferRecord(
                    from_address=normalize_address(t["from"]),
                    to_address=normalize_address(t["to"]),
                    chain=self.chain,
                    token=token,
                    amount=str(value if value is not None else 0),
                    tx_hash=t["hash"],
                    block_number=block,
                )
            )
        return page


class HeliusTransferSource:
    name = "helius"
    chain = "solana"
    chain_type = CHAIN_TYPE_SOLANA
    directions: tuple[str | None, ...] = (None,)

    def __init__(self, api_key: str, *, base_url: str = HELIUS_API_BASE) -> None:
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")

    def __repr__(self) -> str:
        return f"HeliusTransferSource({self._base_url!r})"

    def build_request(
        self,
        client: httpx.AsyncClient,
        address: str,
        direction: str | None,
        from_block: int,
        cursor: str | None,
    ) -> httpx.Request:
        params = {"api-key": self._api_key}
        if cursor:
            params["before"] = cursor
        return client.build_request("GET", f"{self._base_url}/addresses/{address}/transactions", params=params)

    def parse_page(self, payload: Any, from_block: int) -> TransferPage:
        if isinstance(payload, dict) and payload.get("error"):
            raise ExternalApiError(f"helius error: {payload['error']}")
        if not isinstance(payload, list):
            raise ExternalApiError("helius: unexpected response shape")
        page = TransferPage()
        reached_cursor = False
        for tx in payload:
            slot = tx.get("slot")
            # newest first: anything below the stored cursor was stored by an earlier scan
            if from_block > 0 and isinstance(slot, int) and slot < from_block:
                reached_cursor = True
                break
            signature = tx.get("signature")
            if not signature:
                continue
            timestamp = tx.get("timestamp")
            for nt in tx.get("nativeTransfers") or []:
                if not nt.get("fromUserAccount") or not nt.get("toUserAccount"):
                    continue
                page.transfers.append(
                    TransferRecord(
                        from_address=nt["fromUserAccount"],
                        to_address=nt["toUserAccount"],
                        chain=self.chain,
                        token="SOL",
                        amount=str((nt.get("amount") or 0) / LAMPORTS_PER_SOL),
                        tx_hash=signature,
                        block_number=slot,
                        timestamp=timestamp,
                    )
                )
            for tt in tx.get("tokenTransfers") or []:
                if not tt.get("fromUserAccount") or not tt.get("toUserAccount"):
                    continue
                mint = tt.get("mint") or "UNKNOWN"
                page.transfers.append(
                    TransferRecord(
                        from_address=tt["fromUserAccount"],
                        to_address=tt["toUserAccount"],
                        chain=self.chain,
                        token="USDC" if mint == USDC_MINT else mint,
                        amount=str(tt.get("tokenAmount") or 0),
                        tx_hash=signature,
                        block_number=slot,
                        timestamp=timestamp,
                    )
                )
        if payload and not reached_cursor:
            page.next_cursor = payload[-1].get("signature") or None
        return page


def default_sources(settings: Settings) -> tuple[dict[str, TransferSource], TransferSource | None]:
    """Sources for every configured chain that has an API key."""
    evm: dict[str, TransferSource] = {}
    for chain in settings.evm_chains:
        url = get_alchemy_url(chain)
        if url:
            evm[chain] = AlchemyTransferSource(chain, url)
    helius_key = get_helius_api_key()
    return evm, (HeliusTransferSource(helius_key) if helius_key else None)


@dataclass
class ScanProgress:
    addresses_scanned: int = 0
    addresses_total: int = 0
    transfers_found: int = 0
    transfers_inserted: int = 0
    current_address: str = ""
    current_chain: str = ""
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "addresses_scanned": self.addresses_scanned,
            "addresses_total": self.addresses_total,
            "transfers_found": self.transfers_found,
            "transfers_inserted": self.transfers_inserted,
            "current_address": self.current_address,
            "current_chain": self.current_chain,
            "errors": list(self.errors),
        }


@dataclass
class UnitResult:
    transfers_found: int = 0
    transfers_inserted: int = 0
    last_block: int = 0


class TransferFetcher:
    """
    Harvests transfers unit by unit with retry/backoff and cursor bookkeeping.

    sleep is injectable so tests can record backoff delays without waiting.
    """

    def __init__(
        self,
        db: Database,
        settings: Settings,
        *,
        evm_sources: dict[str, TransferSource] | None = None,
        solana_source: TransferSource | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: SleepFn = asyncio.sleep,
    ) -> None:
        self._db = db
        self._settings = settings
        if evm_sources is None and solana_source is None:
            evm_sources, solana_source = default_sources(settings)
        self._evm_sources = evm_sources or {}
        self._solana_source = solana_source
        self._transport = transport
        self._sleep = sleep

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=httpx.Timeout(self._settings.http_timeout_sec),
            transport=self._transport,
        )

    async def _request_page(
        self,
        client: httpx.AsyncClient,
        source: TransferSource,
        address: str,
        direction: str | None,
        from_block: int,
        cursor: str | None,
    ) -> Any:
        """One page with retry. Returns decoded JSON."""
        attempt = 0
        while True:
            request = source.build_request(client, address, direction, from_block, cursor)
            try:
                resp = await client.send(request)
            except httpx.TransportError as e:
                reason = type(e).__name__
            else:
                if resp.status_code == 429 or resp.status_code >= 500:
                    reason = f"http_{resp.status_code}"
                elif resp.status_code >= 400:
                    raise ExternalApiError(
                        f"{source.name} {resp.status_code}: {resp.text[:200]}",
                        status_code=resp.status_code,
                    )
                else:
                    try:
                        return resp.json()
                    except ValueError as e:
                        raise ExternalApiError(f"{source.name}: response is not JSON") from e

            if attempt >= self._settings.max_retries:
                raise RateLimitedError(f"{source.name}: retries exhausted ({reason})")
            delay = self._settings.backoff_base_sec * (2**attempt)
            attempt += 1
            logger.warning(
                "transfer_fetch_retry",
                source=source.name,
                chain=source.chain,
                address=short_address(address),
                reason=reason,
                attempt=attempt,
                delay_sec=delay,
            )
            await self._sleep(delay)

    async def scan_unit(
        self,
        client: httpx.AsyncClient,
        address: DerivedAddress,
        source: TransferSource,
        progress: ScanProgress | None = None,
    ) -> UnitResult:
        """
        Fetch and store all transfers of one (address, chain) unit newer than its cursor.

        The cursor is written only after every page succeeded.
        """
        from_block = self._db.get_scan_cursor(address.id, source.chain)
        max_block = from_block
        result = UnitResult()
        for direction in source.directions:
            cursor: str | None = None
            while True:
                payload = await self._request_page(client, source, address.address, direction, from_block, cursor)
                page = source.parse_page(payload, from_block)
                for transfer in page.transfers:
                    result.transfers_found += 1
                    if self._db.insert_transfer(transfer):
                        result.transfers_inserted += 1
                    if transfer.block_number is not None and transfer.block_number > max_block:
                        max_block = transfer.block_number
                if progress is not None:
                    progress.transfers_found += len(page.transfers)
                if not page.next_cursor:
                    break
                cursor = page.next_cursor
                if self._settings.page_delay_sec > 0:
                    await self._sleep(self._settings.page_delay_sec)
        result.last_block = self._db.set_scan_cursor(address.id, source.chain, max_block)
        logger.info(
            "scan_unit_done",
            chain=source.chain,
            address=short_address(address.address),
            transfers_found=result.transfers_found,
            transfers_inserted=result.transfers_inserted,
            last_block=result.last_block,
        )
        return result

    def _units(self, addresses: list[DerivedAddress]) -> list[tuple[DerivedAddress, str, TransferSource | None]]:
        evm = [a for a in addresses if a.chain_type == CHAIN_TYPE_EVM]
        solana = [a for a in addresses if a.chain_type == CHAIN_TYPE_SOLANA]
        units: list[tuple[DerivedAddress, str, TransferSource | None]] = []
        for chain in self._settings.evm_chains:
            source = self._evm_sources.get(chain)
            units.extend((a, chain, source) for a in evm)
        units.extend((a, "solana", self._solana_source) for a in solana)
        return units

    async def scan_all(self, addresses: list[DerivedAddress], progress: ScanProgress) -> ScanProgress:
        """
        Scan every unit sequentially. Units whose chain has no configured source
        are counted as scanned; a failing unit is recorded and the scan moves on.
        """
        units = self._units(addresses)
        progress.addresses_total = len(units)
        async with self.client() as client:
            for address, chain, source in units:
                if source is None:
                    progress.addresses_scanned += 1
                    continue
                progress.current_address = address.address
                progress.current_chain = chain
                try:
                    unit = await self.scan_unit(client, address, source, progress)
                    progress.transfers_inserted += unit.transfers_inserted
                except ExternalApiError as e:
                    logger.warning(
                        "scan_unit_failed",
                        chain=chain,
                        address=short_address(address.address),
                        code=e.code,
                        error=e.message,
                    )
                    progress.errors.append(f"{chain} {short_address(address.address, 8)}: {e.message}")
                progress.addresses_scanned += 1
        progress.current_address = ""
        progress.current_chain = ""
        return progress
