"""
Browser, profile and wallet-extension discovery.

Walks the known Chromium-family browsers for the current OS, lists their
profile directories and reports which wallet extensions have a LevelDB store
under <profile>/Local Extension Settings/<extension id>.
"""

from __future__ import annotations

import sys
from dataclasses import dataclass, field
from pathlib import Path

from walletlink.extraction.families import WalletFamily
from walletlink.walletlink_logging import get_logger

logger = get_logger(__name__)

EXTENSION_SETTINGS_DIR = "Local Extension Settings"


@dataclass(frozen=True)
class BrowserDef:
    name: str
    slug: str
    paths: dict[str, str]
    """platform (darwin, linux, win32) -> base path relative to the home directory."""


@dataclass(frozen=True)
class WalletExtensionDef:
    extension_id: str
    name: str
    slug: str
    family: WalletFamily


BROWSERS: tuple[BrowserDef, ...] = (
    BrowserDef(
        "Brave",
        "brave",
        {
            "darwin": "Library/Application Support/BraveSoftware/Brave-Browser",
            "linux": ".config/BraveSoftware/Brave-Browser",
            "win32": "AppData/Local/BraveSoftware/Brave-Browser/User Data",
        },
    ),
    BrowserDef(
        "Chrome",
        "chrome",
        {
            "darwin": "Library/Application Support/Google/Chrome",
            "linux": ".config/google-chrome",
            "win32": "AppData/Local/Google/Chrome/User Data",
        },
    ),
    BrowserDef(
        "Edge",
        "edge",
        {
            "darwin": "Library/Application Support/Microsoft Edge",
            "linux": ".config/microsoft-edge",
            "win32": "AppData/Local/Microsoft/Edge/User Data",
        },
    ),
    BrowserDef("Arc", "arc", {"darwin": "Library/Application Support/Arc/User Data"}),
    BrowserDef(
        "Opera",
        "opera",
        {
            "darwin": "Library/Application Support/com.operasoftware.Opera",
            "linux": ".config/opera",
            "win32": "AppData/Roaming/Opera Software/Opera Stable",
        },
    ),
    BrowserDef(
        "Chromium",
        "chromium",
        {
            "darwin": "Library/Application Support/Chromium",
            "linux": ".config/chromium",
            "win32": "AppData/Local/Chromium/User Data",
        },
    ),
)

WALLET_EXTENSIONS: tuple[WalletExtensionDef, ...] = (
    WalletExtensionDef("nkbihfbeogaeaoehlefnkodbefgpgknn", "MetaMask", "metamask", WalletFamily.METAMASK),
    WalletExtensionDef("bfnaelmomeimhlpmgjnjophhpkkoljpa", "Phantom", "phantom", WalletFamily.PHANTOM),
    # Rabby and Coinbase Wallet keep a MetaMask-compatible vault
    WalletExtensionDef("acmacodkjbdgmoleebolmdjonilkdbch", "Rabby", "rabby", WalletFamily.METAMASK),
    WalletExtensionDef("hnfanknocfeofbddgcijnmhnfnkdnaad", "Coinbase Wallet", "coinbase", WalletFamily.METAMASK),
)


@dataclass(frozen=True)
class ExtractionTarget:
    """One installed wallet extension in one browser profile."""

    browser: str
    profile: str
    wallet_name: str
    family: WalletFamily
    data_path: Path

    @property
    def key(self) -> tuple[str, str, str]:
        return (self.browser, self.profile, self.family.value)

    @property
    def extension_key(self) -> tuple[str, str, str]:
        return (self.browser, self.profile, self.wallet_name)


@dataclass
class DiscoveredProfile:
    name: str
    wallets: list[ExtractionTarget] = field(default_factory=list)


@dataclass
class DiscoveredBrowser:
    name: str
    slug: str
    base_path: Path
    profiles: list[DiscoveredProfile] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "slug": self.slug,
            "base_path": str(self.base_path),
            "profiles": [
                {
                    "name": p.name,
                    "wallets": [
                        {"name": w.wallet_name, "family": w.family.value, "data_path": str(w.data_path)}
                        for w in p.wallets
                    ],
                }
                for p in self.profiles
            ],
        }


def is_profile_dir(name: str) -> bool:
    return name == "Default" or name.startswith("Profile ") or name == "Guest Profile"


def _platform_key(platform: str | None) -> str:
    platform = platform or sys.platform
    if platform.startswith("win"):
        return "win32"
    if platform.startswith("linux"):
        return "linux"
    return platform


def get_browser(slug: str) -> BrowserDef | None:
    for browser in BROWSERS:
        if browser.slug == slug or browser.name.lower() == slug.lower():
            return browser
    return None


def get_browser_base_path(
    browser: BrowserDef,
    *,
    home: Path | None = None,
    platform: str | None = None,
) -> Path | None:
    rel = browser.paths.get(_platform_key(platform))
    if not rel:
        return None
    return (home or Path.home()) / rel


def get_extension_data_path(
    browser_slug: str,
    profile: str,
    extension_id: str,
    *,
    home: Path | None = None,
    platform: str | None = None,
) -> Path | None:
    """LevelDB directory for one extension in one profile, or None for an unknown browser/OS."""
    browser = get_browser(browser_slug)
    if browser is None:
        return None
    base = get_browser_base_path(browser, home=home, platform=platform)
    if base is None:
        return None
    return base / profile / EXTENSION_SETTINGS_DIR / extension_id


def discover_browser(
    browser: BrowserDef,
    *,
    home: Path | None = None,
    platform: str | None = None,
) -> DiscoveredBrowser | None:
    base = get_browser_base_path(browser, home=home, platform=platform)
    if base is None or not base.is_dir():
        return None
    try:
        profile_names = sorted(p.name for p in base.iterdir() if p.is_dir() and is_profile_dir(p.name))
    except OSError as e:
        logger.warning("browser_dir_unreadable", browser=browser.slug, error=str(e))
        return None

    profiles: list[DiscoveredProfile] = []
    for name in profile_names:
        wallets = [
            ExtractionTarget(
                browser=browser.slug,
                profile=name,
                wallet_name=ext.name,
                family=ext.family,
                data_path=base / name / EXTENSION_SETTINGS_DIR / ext.extension_id,
            )
            for ext in WALLET_EXTENSIONS
            if (base / name / EXTENSION_SETTINGS_DIR / ext.extension_id).is_dir()
        ]
        if wallets:
            profiles.append(DiscoveredProfile(name=name, wallets=wallets))
    if not profiles:
        return None
    return DiscoveredBrowser(name=browser.name, slug=browser.slug, base_path=base, profiles=profiles)


def discover_all(*, home: Path | None = None, platform: str | None = None) -> list[DiscoveredBrowser]:
    """All browsers on this machine that have at least one profile with a wallet extension."""
    found = []
    for browser in BROWSERS:
        discovered = discover_browser(browser, home=home, platform=platform)
        if discovered is not None:
            found.append(discovered)
    logger.info(
        "discovery_complete",
        browsers=len(found),
        wallets=sum(len(p.wallets) for b in found for p in b.profiles),
    )
    return found


def iter_targets(browsers: list[DiscoveredBrowser]) -> list[ExtractionTarget]:
    return [w for b in browsers for p in b.profiles for w in p.wallets]


def get_wallet_extension(name: str) -> WalletExtensionDef | None:
    """Look up a wallet extension by display name or slug (case-insensitive)."""
    wanted = name.strip().lower()
    for ext in WALLET_EXTENSIONS:
        if wanted in (ext.name.lower(), ext.slug):
            return ext
    return None


def find_target(
    browser_slug: str,
    profile: str,
    family: WalletFamily,
    *,
    wallet_name: str | None = None,
    home: Path | None = None,
    platform: str | None = None,
) -> ExtractionTarget | None:
    """
    Resolve a (browser, profile, family) triple to an installed extension.

    With wallet_name only that extension is considered; without it the first
    installed extension of the family wins.
    """
    browser = get_browser(browser_slug)
    if browser is None:
        return None
    if wallet_name is not None:
        ext = get_wallet_extension(wallet_name)
        candidates: tuple[WalletExtensionDef, ...] = (ext,) if ext is not None and ext.family == family else ()
    else:
        candidates = tuple(ext for ext in WALLET_EXTENSIONS if ext.family == family)
    for ext in candidates:
        path = get_extension_data_path(browser.slug, profile, ext.extension_id, home=home, platform=platform)
        if path is not None and path.is_dir():
            return ExtractionTarget(browser.slug, profile, ext.name, family, path)
    return None
