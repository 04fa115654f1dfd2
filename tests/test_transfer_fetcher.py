"""
Pytest tests for TransferFetcher: retry/backoff, cursor bookkeeping, idempotent
transfer storage and provider payload parsing. HTTP is faked with httpx.MockTransport.
"""

from __future__ import annotations

import asyncio
import json
from dataclasses import replace

import httpx
import pytest

from walletlink.core.exceptions import ExternalApiError, RateLimitedError
from walletlink.database.models import CHAIN_TYPE_SOLANA
from walletlink.scanner import AlchemyTransferSource, HeliusTransferSource, ScanProgress, TransferFetcher

ADDR_A = "0x" + "a" * 40
ADDR_X = "0x" + "9" * 40
RPC_URL = "https://eth-mainnet.example/v2/test-key"


def _alchemy_result(transfers, page_key=None):
    result = {"transfers": transfers}
    if page_key:
        result["pageKey"] = page_key
    return {"jsonrpc": "2.0", "id": 1, "result": result}


def _transfer(frm, to, tx_hash, block, asset="ETH", value=1.0, category="external"):
    return {
        "from": frm,
        "to": to,
        "hash": tx_hash,
        "blockNum": hex(block),
        "asset": asset,
        "value": value,
        "category": category,
    }


class SleepRecorder:
    def __init__(self):
        self.delays = []

    async def __call__(self, delay):
        self.delays.append(delay)


def _fetcher(db, settings, handler, sleep=None):
    return TransferFetcher(
        db,
        settings,
        evm_sources={"ethereum": AlchemyTransferSource("ethereum", RPC_URL)},
        transport=httpx.MockTransport(handler),
        sleep=sleep or SleepRecorder(),
    )


def _scan_unit(fetcher, address, source):
    async def run():
        async with fetcher.client() as client:
            return await fetcher.scan_unit(client, address, source)

    return asyncio.run(run())


def test_rate_limited_twice_then_success(db, settings, add_address):
    """429, 429, 200: only the third response is used; two backoff delays recorded."""
    addr = add_address(ADDR_A)
    calls = {"from": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        params = json.loads(request.content)["params"][0]
        if "fromAddress" in params:
            calls["from"] += 1
            if calls["from"] <= 2:
                return httpx.Response(429, json={"error": "too many requests"})
            return httpx.Response(200, json=_alchemy_result([_transfer(ADDR_A, ADDR_X, "0xt1", 16)]))
        return httpx.Response(200, json=_alchemy_result([]))

    sleep = SleepRecorder()
    fetcher = _fetcher(db, settings, handler, sleep)
    result = _scan_unit(fetcher, addr, AlchemyTransferSource("ethereum", RPC_URL))

    assert calls["from"] == 3
    assert sleep.delays == [1.0, 2.0]
    assert (result.transfers_found, result.transfers_inserted, result.last_block) == (1, 1, 16)
    transfers = db.list_transfers()
    assert [(t.from_address, t.to_address, t.tx_hash, t.token) for t in transfers] == [(ADDR_A, ADDR_X, "0xt1", "ETH")]


def test_second_scan_keeps_cursor_and_adds_no_duplicates(db, settings, add_address):
    """Rescan from the stored block: same transfer comes back, nothing new is stored."""
    addr = add_address(ADDR_A)
    seen_from_blocks = []

    def handler(request: httpx.Request) -> httpx.Response:
        params = json.loads(request.content)["params"][0]
        seen_from_blocks.append(params.get("fromBlock"))
        if "fromAddress" in params:
            return httpx.Response(200, json=_alchemy_result([_transfer(ADDR_A, ADDR_X, "0xt1", 16)]))
        return httpx.Response(200, json=_alchemy_result([]))

    fetcher = _fetcher(db, settings, handler)
    source = AlchemyTransferSource("ethereum", RPC_URL)
    _scan_unit(fetcher, addr, source)
    assert db.get_scan_cursor(addr.id, "ethereum") == 16

    second = _scan_unit(fetcher, addr, source)

    assert second.transfers_inserted == 0
    assert db.get_scan_cursor(addr.id, "ethereum") == 16
    assert len(db.list_transfers()) == 1
    # first scan starts at genesis, second from the cursor
    assert seen_from_blocks == [None, None, "0x10", "0x10"]


def test_paging_follows_page_key_with_delay(db, settings, add_address):
    addr = add_address(ADDR_A)
    settings = replace(settings, page_delay_sec=0.15)

    def handler(request: httpx.Request) -> httpx.Response:
        params = json.loads(request.content)["params"][0]
        if "toAddress" in params:
            return httpx.Response(200, json=_alchemy_result([]))
        if params.get("pageKey") == "page-2":
            return httpx.Response(200, json=_alchemy_result([_transfer(ADDR_A, ADDR_X, "0xt2", 30)]))
        return httpx.Response(200, json=_alchemy_result([_transfer(ADDR_A, ADDR_X, "0xt1", 20)], page_key="page-2"))

    sleep = SleepRecorder()
    result = _scan_unit(_fetcher(db, settings, handler, sleep), addr, AlchemyTransferSource("ethereum", RPC_URL))

    assert result.transfers_inserted == 2
    assert result.last_block == 30
    assert sleep.delays == [0.15]


def test_retries_exhausted_raises_and_leaves_cursor(db, settings, add_address):
    addr = add_address(ADDR_A)
    settings = replace(settings, max_retries=2)
    sleep = SleepRecorder()
    fetcher = _fetcher(db, settings, lambda request: httpx.Response(503), sleep)

    with pytest.raises(RateLimitedError):
        _scan_unit(fetcher, addr, AlchemyTransferSource("ethereum", RPC_URL))
    assert sleep.delays == [1.0, 2.0]
    assert db.get_scan_cursor(addr.id, "ethereum") == 0


def test_timeouts_count_toward_retry_budget(db, settings, add_address):
    """Two read timeouts then 200: two backoff delays and the third response is stored."""
    addr = add_address(ADDR_A)
    calls = {"from": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        params = json.loads(request.content)["params"][0]
        if "fromAddress" in params:
            calls["from"] += 1
            if calls["from"] <= 2:
                raise httpx.ReadTimeout("timed out", request=request)
            return httpx.Response(200, json=_alchemy_result([_transfer(ADDR_A, ADDR_X, "0xt1", 16)]))
        return httpx.Response(200, json=_alchemy_result([]))

    sleep = SleepRecorder()
    result = _scan_unit(_fetcher(db, settings, handler, sleep), addr, AlchemyTransferSource("ethereum", RPC_URL))

    assert calls["from"] == 3
    assert sleep.delays == [1.0, 2.0]
    assert result.transfers_inserted == 1
    assert [t.tx_hash for t in db.list_transfers()] == ["0xt1"]
    assert db.get_scan_cursor(addr.id, "ethereum") == 16


def test_timeouts_exhaust_retries(db, settings, add_address):
    addr = add_address(ADDR_A)
    settings = replace(settings, max_retries=2)

    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("timed out", request=request)

    sleep = SleepRecorder()
    with pytest.raises(RateLimitedError) as exc_info:
        _scan_unit(_fetcher(db, settings, handler, sleep), addr, AlchemyTransferSource("ethereum", RPC_URL))

    assert "ReadTimeout" in str(exc_info.value)
    assert sleep.delays == [1.0, 2.0]
    assert db.get_scan_cursor(addr.id, "ethereum") == 0
    assert db.list_transfers() == []


def test_client_error_is_not_retried(db, settings, add_address):
    addr = add_address(ADDR_A)
    sleep = SleepRecorder()
    fetcher = _fetcher(db, settings, lambda request: httpx.Response(401, text="unauthorized"), sleep)

    with pytest.raises(ExternalApiError) as exc_info:
        _scan_unit(fetcher, addr, AlchemyTransferSource("ethereum", RPC_URL))
    assert exc_info.value.status_code == 401
    assert sleep.delays == []


def test_scan_all_records_unit_errors_and_continues(db, settings, add_address):
    """A failing unit is reported in progress.errors; other units still run."""
    bad = add_address(ADDR_A)
    good = add_address("0x" + "b" * 40)

    def handler(request: httpx.Request) -> httpx.Response:
        params = json.loads(request.content)["params"][0]
        if params.get("fromAddress") == bad.address or params.get("toAddress") == bad.address:
            return httpx.Response(200, json={"jsonrpc": "2.0", "id": 1, "error": {"message": "invalid address"}})
        return httpx.Response(200, json=_alchemy_result([]))

    progress = ScanProgress()
    asyncio.run(_fetcher(db, settings, handler).scan_all(db.list_addresses(), progress))

    assert progress.addresses_total == 2
    assert progress.addresses_scanned == 2
    assert len(progress.errors) == 1
    assert progress.errors[0].startswith("ethereum 0xaaaaaa")
    assert "invalid address" in progress.errors[0]
    assert db.get_scan_cursor(good.id, "ethereum") == 0
    assert progress.current_address == ""


def test_units_without_source_count_as_scanned(db, settings, add_address):
    add_address("9QCfNuQuxct1Xk9ytFYgxc5fThmTzL4pHQnSjjrVUrka", CHAIN_TYPE_SOLANA)
    fetcher = TransferFetcher(db, settings, evm_sources={}, transport=httpx.MockTransport(lambda r: httpx.Response(500)))
    progress = asyncio.run(fetcher.scan_all(db.list_addresses(), ScanProgress()))
    assert (progress.addresses_total, progress.addresses_scanned, progress.errors) == (1, 1, [])


def test_alchemy_token_fallbacks():
    source = AlchemyTransferSource("base", RPC_URL)
    page = source.parse_page(
        _alchemy_result(
            [
                _transfer(ADDR_A.upper().replace("0X", "0x"), ADDR_X, "0x1", 5, asset=None, category="external"),
                _transfer(ADDR_A, ADDR_X, "0x2", 6, asset=None, category="erc20"),
                {"from": ADDR_A, "to": None, "hash": "0x3", "blockNum": "0x7"},
            ]
        ),
        0,
    )
    assert [t.token for t in page.transfers] == ["ETH", "UNKNOWN"]
    assert page.transfers[0].from_address == ADDR_A
    assert page.transfers[0].chain == "base"
    assert page.next_cursor is None


def test_helius_parsing_and_cursor_stop():
    """Native lamports become SOL, the USDC mint is named, and paging stops below the cursor."""
    usdc = "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v"
    payload = [
        {
            "signature": "sig-new",
            "slot": 300,
            "timestamp": 1700000000,
            "nativeTransfers": [{"fromUserAccount": "A", "toUserAccount": "B", "amount": 1_500_000_000}],
            "tokenTransfers": [{"fromUserAccount": "A", "toUserAccount": "C", "mint": usdc, "tokenAmount": 12.5}],
        },
        {"signature": "sig-old", "slot": 100, "nativeTransfers": [{"fromUserAccount": "A", "toUserAccount": "D", "amount": 1}]},
    ]
    source = HeliusTransferSource("key", base_url="https://helius.example/v0")

    full = source.parse_page(payload, 0)
    assert [(t.token, t.amount) for t in full.transfers] == [("SOL", "1.5"), ("USDC", "12.5"), ("SOL", "1e-09")]
    assert full.next_cursor == "sig-old"

    partial = source.parse_page(payload, 200)
    assert [t.to_address for t in partial.transfers] == ["B", "C"]
    assert partial.next_cursor is None

    request = source.build_request(httpx.AsyncClient(), "A", None, 0, "sig-old")
    assert request.url.path == "/v0/addresses/A/transactions"
    assert request.url.params["before"] == "sig-old"
