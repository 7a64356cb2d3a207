"""
FastAPI router: POST /gate, POST /scan, POST /portfolio, GET /report.

Thin wiring only: request bodies and headers are handed to the GateService,
whose GateOutcome decides the status code. Input validation happens in the
service so rejected requests are still recorded in the ledger.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Header, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from backend_riskgate.gateway.service import CallerContext, GateOutcome, GateService

router = APIRouter(prefix="/api/v1", tags=["risk-gate"])


def get_service(request: Request) -> GateService:
    """Dependency: app-scoped GateService created in the lifespan."""
    return request.app.state.service


def _caller(request: Request, wallet: str | None, api_key: str | None) -> CallerContext:
    client_id = request.client.host if request.client else None
    return CallerContext(wallet=wallet, api_key=api_key, client_id=client_id)


def _respond(outcome: GateOutcome) -> JSONResponse:
    return JSONResponse(status_code=outcome.status_code, content=outcome.body)


class GateRequest(BaseModel):
    """POST /api/v1/gate body."""

    model_config = ConfigDict(populate_by_name=True)

    token: str | None = Field(None, description="Contract address (0x + 40 hex)")
    action_type: str | None = Field(
        None, alias="actionType", description="swap | dca | yield_enter | lend | stake"
    )
    chain: str | None = Field(None, description="Chain name, default ethereum")
    wallet: str | None = Field(None, description="Caller wallet; used as quota identity")


class ScanRequest(BaseModel):
    """POST /api/v1/scan body."""

    model_config = ConfigDict(populate_by_name=True)

    contract_address: str | None = Field(None, alias="contractAddress")
    chain: str | None = None
    wallet: str | None = None


class PortfolioRequest(BaseModel):
    """POST /api/v1/portfolio body."""

    tokens: list[str] = Field(default_factory=list)
    weights: list[float] | None = None
    chain: str | None = None
    wallet: str | None = None


@router.post("/gate")
async def gate(
    body: GateRequest,
    request: Request,
    x_api_key: str | None = Header(None, alias="X-API-Key"),
    service: GateService = Depends(get_service),
) -> JSONResponse:
    """Pre-execution risk verdict for one token and intended action."""
    ctx = _caller(request, body.wallet, x_api_key)
    return _respond(await service.gate(body.token or "", body.action_type or "", body.chain, ctx))


@router.post("/scan")
async def scan(
    body: ScanRequest,
    request: Request,
    x_api_key: str | None = Header(None, alias="X-API-Key"),
    service: GateService = Depends(get_service),
) -> JSONResponse:
    """Deep scan: full risk schema plus evidence bundle (longer cache TTL)."""
    ctx = _caller(request, body.wallet, x_api_key)
    return _respond(await service.scan(body.contract_address or "", body.chain, ctx))


@router.post("/portfolio")
async def portfolio(
    body: PortfolioRequest,
    request: Request,
    x_api_key: str | None = Header(None, alias="X-API-Key"),
    service: GateService = Depends(get_service),
) -> JSONResponse:
    """Merged risk over several tokens, gated as one position."""
    ctx = _caller(request, body.wallet, x_api_key)
    return _respond(await service.portfolio(body.tokens, body.weights, body.chain, ctx))


@router.get("/report")
async def report(
    date: str | None = Query(None, description="UTC day YYYY-MM-DD; default today"),
    service: GateService = Depends(get_service),
) -> JSONResponse:
    """Daily aggregation over the request ledger."""
    return _respond(await service.report(date))
