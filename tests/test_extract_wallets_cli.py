"""
Pytest tests for the interactive extraction CLI (password retry flow).
"""

from __future__ import annotations

import asyncio
from pathlib import Path

from walletlink.extraction import ExtractionError, ExtractionResult, WalletFamily
from walletlink.extraction.browsers import ExtractionTarget
from walletlink.tools import extract_wallets

TARGET = ExtractionTarget("brave", "Profile 1", "MetaMask", WalletFamily.METAMASK, Path("/nonexistent"))


class FakeOrchestrator:
    """extract_one succeeds only for the password 'good'."""

    def __init__(self):
        self.attempts = []
        self.wallet_names = []

    async def extract_one(self, browser, profile, family, password, wallet_name=None):
        self.attempts.append(password)
        self.wallet_names.append(wallet_name)
        if password == "good":
            return ExtractionResult(credentials_found=1, addresses_found=1)
        return ExtractionResult(errors=[ExtractionError(browser, profile, "MetaMask", "wrong password", True)])


def _wrong_password_result():
    return ExtractionResult(
        credentials_found=2,
        addresses_found=3,
        errors=[
            ExtractionError("brave", "Profile 1", "MetaMask", "wrong password", True),
            ExtractionError("brave", "Default", "Phantom", "malformed vault", False),
        ],
    )


def test_retry_until_correct_password(monkeypatch):
    answers = iter(["bad", "good"])
    monkeypatch.setattr(extract_wallets.getpass, "getpass", lambda prompt: next(answers))
    fake = FakeOrchestrator()

    merged = asyncio.run(extract_wallets._retry_wrong_passwords(fake, [TARGET], _wrong_password_result()))

    assert fake.attempts == ["bad", "good"]
    assert fake.wallet_names == ["MetaMask", "MetaMask"]
    assert (merged.credentials_found, merged.addresses_found) == (3, 4)
    assert [e.wallet_name for e in merged.errors] == ["Phantom"]


def test_empty_answer_skips_retry(monkeypatch):
    monkeypatch.setattr(extract_wallets.getpass, "getpass", lambda prompt: "")
    fake = FakeOrchestrator()

    merged = asyncio.run(extract_wallets._retry_wrong_passwords(fake, [TARGET], _wrong_password_result()))

    assert fake.attempts == []
    assert sorted(e.wallet_name for e in merged.errors) == ["MetaMask", "Phantom"]
    assert merged.credentials_found == 2


def test_prompt_passwords_skips_empty(monkeypatch):
    answers = iter(["mm", ""])
    monkeypatch.setattr(extract_wallets.getpass, "getpass", lambda prompt: next(answers))
    assert extract_wallets._prompt_passwords([WalletFamily.METAMASK, WalletFamily.PHANTOM]) == {"metamask": "mm"}


def test_retry_targets_the_failed_extension(monkeypatch):
    """Rabby shares the metamask family; the retry must name Rabby explicitly."""
    rabby = ExtractionTarget("brave", "Default", "Rabby", WalletFamily.METAMASK, Path("/nonexistent"))
    monkeypatch.setattr(extract_wallets.getpass, "getpass", lambda prompt: "good")
    fake = FakeOrchestrator()
    result = ExtractionResult(errors=[ExtractionError("brave", "Default", "Rabby", "wrong password", True)])

    merged = asyncio.run(extract_wallets._retry_wrong_passwords(fake, [TARGET, rabby], result))

    assert fake.wallet_names == ["Rabby"]
    assert merged.errors == []
    assert merged.credentials_found == 1
