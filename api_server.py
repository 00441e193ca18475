"""
Escrow Hold Coordinator API server.
Run with: uvicorn api_server:create_app --factory --host 0.0.0.0 --port 4000
"""

import os
import sys
import logging

# .env must be loaded before config reads the environment
from dotenv import load_dotenv
load_dotenv(os.path.join(os.path.dirname(os.path.abspath(__file__)), ".env"))

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from config import Config
from middleware.auth_security import AuthSecurityService, bearer_token, get_client_ip
from middleware.rate_limiter import RateLimiter
from routes import auth_routes, escrow_routes, notification_routes, wallet_routes
from services.audit_logger import AuditLogger
from services.escrow_service import EscrowService
from services.state_store import SqlAlchemyStateStore, build_state_store
from utils.exception_handler import EscrowError, escrow_error_handler
from utils.idempotency import IdempotencyCache
from utils.session_tokens import InvalidSessionToken, SessionTokenSecurity

logger = logging.getLogger(__name__)

API_PREFIX = "/api"
RATE_LIMITED_METHODS = {"POST", "PATCH", "PUT", "DELETE"}


def setup_logging() -> None:
    logging.basicConfig(
        level=getattr(logging, Config.LOG_LEVEL, logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )
    logging.getLogger("httpx").setLevel(logging.WARNING)


def _rate_limit_caller(request: Request) -> str:
    token = bearer_token(request)
    if token:
        try:
            return f"session:{SessionTokenSecurity.verify(token).session_id}"
        except InvalidSessionToken:
            pass
    return f"ip:{get_client_ip(request)}"


def create_app(service: EscrowService = None) -> FastAPI:
    """
    Build the API app around an EscrowService.

    Without an explicit service the store named by STORAGE_BACKEND is opened
    and its state loaded before the first request.
    """
    if service is None:
        Config.validate()
        Config.log_environment_config()
        service = EscrowService(build_state_store(), AuditLogger()).bootstrap()

    app = FastAPI(
        title="Escrow Hold Coordinator",
        description="Wallet ledger and escrow hold state machine for P2P exchange trades",
    )
    app.state.escrow_service = service
    app.state.auth_security = AuthSecurityService()
    app.state.rate_limiter = RateLimiter(Config.RATE_LIMIT_MAX_REQUESTS, Config.RATE_LIMIT_WINDOW_SECONDS)
    app.state.idempotency_cache = IdempotencyCache(Config.IDEMPOTENCY_TTL_SECONDS)

    app.add_exception_handler(EscrowError, escrow_error_handler)

    @app.middleware("http")
    async def rate_limit_mutations(request: Request, call_next):
        if request.method in RATE_LIMITED_METHODS and request.url.path.startswith(API_PREFIX):
            limited, retry_after = app.state.rate_limiter.is_rate_limited(
                _rate_limit_caller(request), action=request.method
            )
            if limited:
                return JSONResponse(
                    status_code=429,
                    content={"message": "Too many requests", "code": "rate_limited"},
                    headers={"Retry-After": str(retry_after)},
                )
        return await call_next(request)

    for module in (auth_routes, wallet_routes, escrow_routes, notification_routes):
        app.include_router(module.router, prefix=API_PREFIX)
    app.include_router(escrow_routes.public_router, prefix=API_PREFIX)

    @app.get("/health")
    @app.get(f"{API_PREFIX}/health")
    async def health_check():
        store = app.state.escrow_service.store
        status = "ok"
        if isinstance(store, SqlAlchemyStateStore):
            from database import check_connection

            if not check_connection(store.session_factory.kw.get("bind")):
                status = "degraded"
        return {
            "status": status,
            "service": "escrow-coordinator",
            "storage": type(store).__name__,
            "holds": len(app.state.escrow_service.list_escrows()),
        }

    logger.info(f"🚀 API_READY: storage={type(service.store).__name__}")
    return app


def main():
    import uvicorn

    setup_logging()
    uvicorn.run(
        "api_server:create_app",
        factory=True,
        host=Config.HOST,
        port=Config.PORT,
        log_level=Config.LOG_LEVEL.lower(),
    )


if __name__ == "__main__":
    main()
