"""
Extraction orchestrator: discovered wallet extensions -> persisted credentials and addresses.

Per item: locate -> decrypt -> extract -> persist. Snapshot reads, KDF and
derivation work run in the default executor so the event loop stays free.
Failures are collected per (browser, profile, wallet) next to the successes;
a wrong password is flagged retryable so the caller can offer a targeted retry
through extract_one().
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from functools import partial
from pathlib import Path
from typing import Any, Iterable, Mapping

from walletlink.core.exceptions import VaultNotFoundError, WalletLinkError
from walletlink.database import Database, ExtractedCredential
from walletlink.database.models import (
    CHAIN_TYPE_EVM,
    CHAIN_TYPE_SOLANA,
    CREDENTIAL_METAMASK_HD,
    CREDENTIAL_METAMASK_IMPORTED,
    CREDENTIAL_PHANTOM_KEYPAIR,
    CREDENTIAL_PHANTOM_SEED,
)
from walletlink.extraction.browsers import (
    DiscoveredBrowser,
    ExtractionTarget,
    discover_all,
    find_target,
    iter_targets,
)
from walletlink.extraction.families import WalletFamily, get_parser
from walletlink.extraction.leveldb_snapshot import read_all_entries
from walletlink.extraction.metamask import MetaMaskKeys
from walletlink.extraction.phantom import PhantomKeys
from walletlink.walletlink_logging import bind_target, get_logger

logger = get_logger(__name__)


@dataclass
class ExtractionError:
    browser: str
    profile: str
    wallet_name: str
    error: str
    retryable: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "browser": self.browser,
            "profile": self.profile,
            "wallet_name": self.wallet_name,
            "error": self.error,
            "retryable": self.retryable,
        }


@dataclass
class ExtractionResult:
    credentials_found: int = 0
    addresses_found: int = 0
    errors: list[ExtractionError] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "credentials_found": self.credentials_found,
            "addresses_found": self.addresses_found,
            "errors": [e.to_dict() for e in self.errors],
        }


def password_for(target: ExtractionTarget, passwords: Mapping[Any, str]) -> str | None:
    """(browser, profile, wallet) and (browser, profile, family) entries win over the family-wide entry."""
    specific = passwords.get(target.extension_key) or passwords.get(target.key)
    if specific:
        return specific
    return passwords.get(target.family.value) or None


class ExtractionOrchestrator:
    """Runs the locate/decrypt/extract pipeline per target and persists the results."""

    def __init__(
        self,
        db: Database,
        *,
        scratch_root: str | Path | None = None,
        home: Path | None = None,
        platform: str | None = None,
    ) -> None:
        self._db = db
        self._scratch_root = scratch_root
        self._home = home
        self._platform = platform
        self._locks: dict[tuple[str, str, str], asyncio.Lock] = {}

    def discover_browsers(self) -> list[DiscoveredBrowser]:
        return discover_all(home=self._home, platform=self._platform)

    def discover(self) -> list[ExtractionTarget]:
        return iter_targets(self.discover_browsers())

    async def extract(
        self,
        profiles: Iterable[ExtractionTarget] | None,
        passwords: Mapping[Any, str],
    ) -> ExtractionResult:
        """
        Extract every target (all discovered ones when profiles is None).

        Targets without a password are skipped. Items are processed sequentially.
        """
        targets = list(profiles) if profiles is not None else self.discover()
        result = ExtractionResult()
        for target in targets:
            password = password_for(target, passwords)
            if not password:
                logger.debug(
                    "extraction_skipped_no_password",
                    browser=target.browser,
                    profile=target.profile,
                    wallet_name=target.wallet_name,
                )
                continue
            await self._process_locked(target, password, result)
        logger.info(
            "extraction_complete",
            targets=len(targets),
            credentials_found=result.credentials_found,
            addresses_found=result.addresses_found,
            errors=len(result.errors),
        )
        return result

    async def extract_one(
        self,
        browser: str,
        profile: str,
        wallet_family: WalletFamily | str,
        password: str,
        wallet_name: str | None = None,
    ) -> ExtractionResult:
        """
        Targeted (re)try for one browser profile and wallet family.

        wallet_name pins the extension (e.g. Rabby) when several of the same
        family are installed in the profile.
        """
        family = WalletFamily(wallet_family)
        result = ExtractionResult()
        target = find_target(
            browser, profile, family, wallet_name=wallet_name, home=self._home, platform=self._platform
        )
        if target is None:
            logger.debug(
                "extraction_target_not_found",
                browser=browser,
                profile=profile,
                family=family.value,
                wallet_name=wallet_name,
            )
            return result
        await self._process_locked(target, password, result)
        return result

    async def _process_locked(self, target: ExtractionTarget, password: str, result: ExtractionResult) -> None:
        lock = self._locks.setdefault(target.extension_key, asyncio.Lock())
        async with lock:
            await self._process(target, password, result)

    async def _process(self, target: ExtractionTarget, password: str, result: ExtractionResult) -> None:
        log = bind_target(logger, target.browser, target.profile, target.wallet_name)
        loop = asyncio.get_running_loop()
        parser = get_parser(target.family)
        try:
            entries = await loop.run_in_executor(
                None, partial(read_all_entries, target.data_path, scratch_root=self._scratch_root)
            )
            vault = parser.locate(entries)
            if vault is None:
                log.debug("vault_not_found")
                return
            material = await loop.run_in_executor(None, parser.decrypt, vault, password)
            keys = await loop.run_in_executor(None, parser.extract_keys, material)
        except VaultNotFoundError:
            log.debug("wallet_not_installed")
            return
        except WalletLinkError as e:
            log.warning("extraction_failed", code=e.code, retryable=e.retryable)
            result.errors.append(self._error(target, e.message, e.retryable))
            return
        except Exception as e:
            log.exception("extraction_unexpected_error", error_type=type(e).__name__)
            result.errors.append(self._error(target, str(e) or type(e).__name__, False))
            return

        for entry_error in getattr(material, "entry_errors", []):
            result.errors.append(self._error(target, entry_error.message, entry_error.retryable))

        if isinstance(keys, MetaMaskKeys):
            credentials, addresses = self._persist_metamask(target, keys)
        elif isinstance(keys, PhantomKeys):
            credentials, addresses = self._persist_phantom(target, keys)
        else:
            credentials, addresses = 0, 0
        result.credentials_found += credentials
        result.addresses_found += addresses
        log.info("extraction_item_done", credentials_new=credentials, addresses_new=addresses)

    @staticmethod
    def _error(target: ExtractionTarget, message: str, retryable: bool) -> ExtractionError:
        return ExtractionError(
            browser=target.browser,
            profile=target.profile,
            wallet_name=target.wallet_name,
            error=message,
            retryable=retryable,
        )

    def _store_credential(self, target: ExtractionTarget, credential_type: str, **secret: str) -> tuple[int, bool]:
        return self._db.insert_credential(
            ExtractedCredential(
                credential_type=credential_type,
                browser=target.browser,
                profile=target.profile,
                label=target.wallet_name,
                **secret,
            )
        )

    def _persist_metamask(self, target: ExtractionTarget, keys: MetaMaskKeys) -> tuple[int, int]:
        credentials = addresses = 0
        for hd in keys.hd_wallets:
            cred_id, created = self._store_credential(target, CREDENTIAL_METAMASK_HD, mnemonic=hd.mnemonic)
            credentials += int(created)
            for index, address in enumerate(hd.addresses):
                _, new = self._db.insert_address(cred_id, address, CHAIN_TYPE_EVM, index)
                addresses += int(new)
        for imported in keys.imported_keys:
            cred_id, created = self._store_credential(
                target, CREDENTIAL_METAMASK_IMPORTED, private_key=imported.private_key
            )
            credentials += int(created)
            _, new = self._db.insert_address(cred_id, imported.address, CHAIN_TYPE_EVM)
            addresses += int(new)
        return credentials, addresses

    def _persist_phantom(self, target: ExtractionTarget, keys: PhantomKeys) -> tuple[int, int]:
        credentials = addresses = 0
        for phrase in keys.mnemonics:
            # Stored only; Solana accounts of a seed are not derived here.
            _, created = self._store_credential(target, CREDENTIAL_PHANTOM_SEED, mnemonic=phrase)
            credentials += int(created)
        for keypair in keys.keypairs:
            cred_id, created = self._store_credential(
                target, CREDENTIAL_PHANTOM_KEYPAIR, private_key=keypair.secret_key
            )
            credentials += int(created)
            if keypair.public_key:
                _, new = self._db.insert_address(cred_id, keypair.public_key, CHAIN_TYPE_SOLANA)
                addresses += int(new)
        return credentials, addresses
