"""
FastAPI server for WalletLink.

Thin HTTP surface over the extraction and scan orchestrators:
profile discovery, vault extraction (all profiles or one targeted retry),
background transfer scan with progress polling, clusters and connections.
Passwords arrive in request bodies only; they are never logged or stored.
"""

from __future__ import annotations

import math
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from walletlink.config import Settings, get_settings
from walletlink.database import Database, get_database
from walletlink.extraction import ExtractionOrchestrator, WalletFamily
from walletlink.scanner import ScanOrchestrator, ScanState
from walletlink.walletlink_logging import get_logger

logger = get_logger(__name__)

MAX_PAGE_LIMIT = 200
DEFAULT_PAGE_LIMIT = 50


@dataclass
class Services:
    """App-scoped collaborators; one ScanState per process."""

    db: Database
    settings: Settings
    extraction: ExtractionOrchestrator
    scan: ScanOrchestrator


def build_services(
    db: Database | None = None,
    settings: Settings | None = None,
    *,
    extraction: ExtractionOrchestrator | None = None,
    scan: ScanOrchestrator | None = None,
) -> Services:
    settings = settings or get_settings()
    db = db or get_database(settings.db_path)
    return Services(
        db=db,
        settings=settings,
        extraction=extraction or ExtractionOrchestrator(db, scratch_root=settings.scratch_dir),
        scan=scan or ScanOrchestrator(db, settings, ScanState()),
    )


def get_services(request: Request) -> Services:
    """Dependency: services built at startup."""
    return request.app.state.services


# -----------------------------------------------------------------------------
# Request / response models
# -----------------------------------------------------------------------------


class ExtractRequest(BaseModel):
    """POST /api/extract body: one password per wallet family (omit to skip a family)."""

    metamask_password: str | None = Field(None, description="Password for MetaMask-compatible vaults")
    phantom_password: str | None = Field(None, description="Password for Phantom vaults")


class ExtractProfileRequest(BaseModel):
    """POST /api/extract/profile body: targeted retry for one browser profile and family."""

    browser: str = Field("brave", min_length=1, description="Browser slug (brave, chrome, edge, ...)")
    profile: str = Field(..., min_length=1, description="Profile directory name, e.g. 'Default'")
    wallet_family: WalletFamily = Field(..., description="metamask or phantom")
    wallet_name: str | None = Field(None, description="Extension name or slug (MetaMask, rabby, ...)")
    password: str = Field(..., min_length=1)


class ExtractionErrorModel(BaseModel):
    browser: str
    profile: str
    wallet_name: str
    error: str
    retryable: bool


class ExtractResponse(BaseModel):
    credentials_found: int = Field(..., description="Newly stored credentials")
    addresses_found: int = Field(..., description="Newly stored addresses")
    errors: list[ExtractionErrorModel] = Field(default_factory=list)


# -----------------------------------------------------------------------------
# App
# -----------------------------------------------------------------------------


def create_app(services: Services | None = None) -> FastAPI:
    """Build the ASGI app. services defaults to the configured database and settings."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if getattr(app.state, "services", None) is None:
            app.state.services = build_services()
        logger.info("api_started", db_path=str(app.state.services.settings.db_path))
        yield
        logger.info("api_stopped")

    app = FastAPI(
        title="WalletLink API",
        description="Browser wallet extraction and on-chain ownership clustering.",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.services = services

    @app.get("/health")
    def health() -> dict[str, str]:
        """Liveness probe: API is up."""
        return {"status": "ok"}

    @app.get("/api/profiles")
    def list_profiles(svc: Services = Depends(get_services)) -> dict[str, Any]:
        """Browsers, profiles and installed wallet extensions on this machine."""
        browsers = svc.extraction.discover_browsers()
        return {"browsers": [b.to_dict() for b in browsers]}

    @app.post("/api/extract", response_model=ExtractResponse)
    async def extract(body: ExtractRequest, svc: Services = Depends(get_services)) -> dict[str, Any]:
        """Extract every discovered wallet that has a password for its family."""
        passwords: dict[str, str] = {}
        if body.metamask_password:
            passwords[WalletFamily.METAMASK.value] = body.metamask_password
        if body.phantom_password:
            passwords[WalletFamily.PHANTOM.value] = body.phantom_password
        if not passwords:
            raise HTTPException(status_code=400, detail="at least one password is required")
        result = await svc.extraction.extract(None, passwords)
        return result.to_dict()

    @app.post("/api/extract/profile", response_model=ExtractResponse)
    async def extract_profile(body: ExtractProfileRequest, svc: Services = Depends(get_services)) -> dict[str, Any]:
        """Retry one (browser, profile, family), e.g. after a wrong-password error."""
        result = await svc.extraction.extract_one(
            body.browser, body.profile, body.wallet_family, body.password, wallet_name=body.wallet_name
        )
        return result.to_dict()

    @app.post("/api/connections/scan")
    async def start_scan(svc: Services = Depends(get_services)) -> JSONResponse:
        """Start a background scan; 409 if one is already running."""
        if not svc.scan.start_scan():
            raise HTTPException(status_code=409, detail="Scan already in progress")
        return JSONResponse(status_code=202, content={"started": True})

    @app.get("/api/connections/scan-state")
    def scan_state(svc: Services = Depends(get_services)) -> dict[str, Any]:
        """Live progress (while scanning), last result and persisted counters."""
        return svc.scan.scan_status()

    @app.get("/api/connections/clusters")
    def clusters(svc: Services = Depends(get_services)) -> dict[str, Any]:
        return {"clusters": [c.to_dict() for c in svc.scan.clusters()]}

    @app.get("/api/connections")
    def list_connections(
        kind: str | None = Query(None, alias="type", description="direct or indirect"),
        page: int = Query(1, ge=1),
        limit: int = Query(DEFAULT_PAGE_LIMIT, ge=1, description=f"Page size, capped at {MAX_PAGE_LIMIT}"),
        svc: Services = Depends(get_services),
    ) -> dict[str, Any]:
        """Paginated connection list, filterable by type."""
        limit = min(limit, MAX_PAGE_LIMIT)
        total = svc.db.count_connections(kind)
        rows = svc.db.list_connections(kind=kind, limit=limit, offset=(page - 1) * limit)
        details = svc.db.get_cluster_members(i for c in rows for i in (c.address_id_a, c.address_id_b))
        connections = []
        for c in rows:
            item = c.to_dict()
            a, b = details.get(c.address_id_a), details.get(c.address_id_b)
            item["address_a"] = a.address if a else None
            item["address_b"] = b.address if b else None
            connections.append(item)
        return {
            "connections": connections,
            "pagination": {
                "page": page,
                "limit": limit,
                "total": total,
                "total_pages": math.ceil(total / limit) if total else 0,
            },
        }

    @app.exception_handler(HTTPException)
    def http_exception_handler(request: Any, exc: HTTPException) -> JSONResponse:
        """Consistent JSON error response for HTTPException."""
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})

    return app


app = create_app()
