# app.py
from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Dict, List, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from . import __version__
from .amounts import format_amount
from .api_models import (
    CheckEligibilityIn,
    ClaimIn,
    ClaimOut,
    ClaimSummaryOut,
    ConfigOut,
    EligibilityOut,
    ErrorOut,
    HealthOut,
    RecaptchaConfigOut,
    StatsOut,
)
from .blockchain_routes import create_blockchain_router
from .bot_check import RecaptchaVerifier
from .errors import FaucetError
from .ledger_store import LedgerStore
from .models import ClaimRecord, utc_now
from .orchestrator import ClaimOrchestrator
from .settings import FaucetSettings
from .token_gateway import TokenGateway, Web3TokenGateway

RECENT_CLAIMS_DEFAULT = 10
RECENT_CLAIMS_MAX = 100
STATS_RECENT_CLAIMS = 5


# ---------------------------
# Request rate limit (in-memory, fixed window)
# (OK for 1 process; use Redis for multi-worker)
# ---------------------------
@dataclass
class RateWindow:
    started_at: float
    count: int


class RequestRateLimiter:
    def __init__(self, max_requests: int, window_sec: float, clock=time.monotonic):
        self.max_requests = max_requests
        self.window_sec = window_sec
        self._clock = clock
        self._windows: Dict[str, RateWindow] = {}
        self._lock = threading.Lock()

    def hit(self, key: str) -> bool:
        """Count one request for `key`; False once the window is exhausted."""
        now = self._clock()
        with self._lock:
            w = self._windows.get(key)
            if w is None or now - w.started_at >= self.window_sec:
                self._windows[key] = RateWindow(started_at=now, count=1)
                self._prune(now)
                return True
            if w.count >= self.max_requests:
                return False
            w.count += 1
            return True

    def _prune(self, now: float) -> None:
        stale = [k for k, w in self._windows.items() if now - w.started_at >= self.window_sec]
        for k in stale:
            del self._windows[k]


def get_client_ip(req: Request, trust_proxy: bool = False) -> str:
    # NOTE: only trust X-Forwarded-For when a proxy we control sets it.
    if trust_proxy:
        fwd = req.headers.get("x-forwarded-for", "")
        first = fwd.split(",")[0].strip()
        if first:
            return first
    return req.client.host if req.client else "unknown"


def _error(status_code: int, error: str, message: str, reason: Optional[str] = None) -> JSONResponse:
    body = ErrorOut(error=error, message=message, reason=reason)
    return JSONResponse(status_code=status_code, content=body.model_dump(mode="json", by_alias=True, exclude_none=True))


def _claim_summary(c: ClaimRecord, decimals: int) -> ClaimSummaryOut:
    return ClaimSummaryOut(
        address=c.address,
        amount=format_amount(c.amount, decimals),
        timestamp=c.timestamp,
        tx_hash=c.tx_hash,
    )


def build_orchestrator(settings: FaucetSettings, gateway: Optional[TokenGateway] = None) -> ClaimOrchestrator:
    store = LedgerStore(settings.data_dir)
    verifier = RecaptchaVerifier(
        secret_key=settings.recaptcha_secret_key,
        min_score=settings.recaptcha_min_score,
        timeout=settings.external_call_timeout_sec,
    )
    return ClaimOrchestrator(
        store=store,
        gateway=gateway or Web3TokenGateway(settings),
        verifier=verifier,
        policy=settings.policy(),
        reconcile_queue_file=settings.reconcile_queue_file,
        token_decimals=settings.token_decimals,
    )


# ---------------------------
# App
# ---------------------------
def create_app(
    settings: Optional[FaucetSettings] = None,
    orchestrator: Optional[ClaimOrchestrator] = None,
) -> FastAPI:
    settings = settings or FaucetSettings.from_env()
    orchestrator = orchestrator or build_orchestrator(settings)
    gateway = orchestrator.gateway
    decimals = settings.token_decimals

    for field in settings.missing_fields():
        print(f"[startup] missing or default configuration value: {field}")

    app = FastAPI(title="Token Faucet", version=__version__)
    app.state.settings = settings
    app.state.orchestrator = orchestrator

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins or ["*"],
        allow_credentials=bool(settings.cors_origins),
        allow_methods=["*"],
        allow_headers=["*"],
    )

    limiter = RequestRateLimiter(settings.rate_limit_max, settings.rate_limit_window_ms / 1000.0)
    app.state.rate_limiter = limiter

    @app.middleware("http")
    async def rate_limit(request: Request, call_next):
        if request.url.path.startswith("/api/"):
            ip = get_client_ip(request, settings.trust_proxy)
            if not limiter.hit(ip):
                window_min = max(1, int(settings.rate_limit_window_ms / 60000))
                return _error(
                    429,
                    "Too many requests",
                    f"Too many requests from this IP. Please try again in {window_min} minutes.",
                )
        return await call_next(request)

    @app.exception_handler(FaucetError)
    async def faucet_error_handler(request: Request, exc: FaucetError):
        if exc.http_status >= 500:
            print(f"[api] {request.url.path}: {type(exc).__name__}: {exc.message} ({exc.detail})")
        return _error(exc.http_status, type(exc).__name__, exc.message, reason=type(exc).__name__)

    # ---------------------------
    # Faucet
    # ---------------------------
    @app.post("/api/faucet/check-eligibility", response_model=EligibilityOut, response_model_exclude_none=True)
    def check_eligibility(data: CheckEligibilityIn, req: Request):
        verdict = orchestrator.check_eligibility(data.address, get_client_ip(req, settings.trust_proxy))
        return EligibilityOut(
            eligible=verdict.eligible,
            message=verdict.message,
            reason=verdict.reason.value if verdict.reason else None,
            amount=format_amount(verdict.amount, decimals) if verdict.amount is not None else None,
            next_claim_time=verdict.next_eligible_at,
        )

    @app.post("/api/faucet/claim", response_model=ClaimOut, response_model_exclude_none=True)
    def claim(data: ClaimIn, req: Request):
        ip = get_client_ip(req, settings.trust_proxy)
        outcome = orchestrator.claim(data.address, ip, data.bot_verification_token)
        body = ClaimOut(
            success=outcome.success,
            message=outcome.message,
            reason=outcome.reason,
            amount=format_amount(outcome.amount, decimals) if outcome.amount is not None else None,
            tx_hash=outcome.tx_hash,
            next_claim_time=outcome.next_eligible_at,
        )
        return JSONResponse(
            status_code=outcome.http_status,
            content=body.model_dump(mode="json", by_alias=True, exclude_none=True),
        )

    @app.get("/api/faucet/stats", response_model=StatsOut)
    def stats():
        s = orchestrator.stats(recent_limit=STATS_RECENT_CLAIMS)
        return StatsOut(
            total_claims=s["total_claims"],
            total_amount_distributed=format_amount(s["total_amount_distributed"], decimals),
            faucet_balance=format_amount(s["faucet_balance"], decimals),
            claim_amount=format_amount(s["claim_amount"], decimals),
            cooldown_hours=s["cooldown_hours"],
            recent_claims=[_claim_summary(c, decimals) for c in s["recent_claims"]],
        )

    @app.get("/api/faucet/recent-claims", response_model=List[ClaimSummaryOut])
    def recent_claims(limit: int = RECENT_CLAIMS_DEFAULT):
        limit = max(1, min(int(limit), RECENT_CLAIMS_MAX))
        return [_claim_summary(c, decimals) for c in orchestrator.recent_claims(limit)]

    # ---------------------------
    # Blockchain pass-through
    # ---------------------------
    app.include_router(create_blockchain_router(gateway, decimals), prefix="/api/blockchain")

    # ---------------------------
    # Health / public config
    # ---------------------------
    @app.get("/api/health", response_model=HealthOut)
    def health():
        return HealthOut(status="OK", timestamp=utc_now(), version=__version__)

    @app.get("/api/config", response_model=ConfigOut)
    def public_config():
        """Non-secret settings the front end needs to render the claim form."""
        return ConfigOut(
            claim_amount=format_amount(settings.claim_amount, decimals),
            claim_amount_raw=str(settings.claim_amount),
            cooldown_hours=settings.cooldown_hours,
            max_claims_per_ip=settings.max_claims_per_ip,
            ip_window_hours=settings.ip_window_hours,
            network_id=settings.network_id,
            token_contract_address=settings.token_contract_address,
            recaptcha=RecaptchaConfigOut(
                site_key=settings.recaptcha_site_key,
                version=settings.recaptcha_version,
                theme=settings.recaptcha_theme,
                size=settings.recaptcha_size,
            ),
        )

    return app


def main() -> None:
    import uvicorn

    settings = FaucetSettings.from_env()
    print(f"[startup] token faucet on http://{settings.host}:{settings.port}/api")
    uvicorn.run(create_app(settings), host=settings.host, port=settings.port)


if __name__ == "__main__":
    main()
