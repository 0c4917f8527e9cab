from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import List, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from walletsync.config import settings
from walletsync.core.errors import DataSourceError, PersistenceError, ValidationError, WalletSyncError
from walletsync.services.sync_service import WalletSyncService
from walletsync.api.routes import router as wallets_router, tokens_router

from walletsync.adapters.chain.helius_chain_adapter import HeliusChainAdapter
from walletsync.adapters.chain.static_chain_adapter import StaticChainAdapter
from walletsync.adapters.pricing.coingecko_price_adapter import CoinGeckoPriceAdapter
from walletsync.adapters.store.postgres_trade_store import PostgresTradeStore, open_connection
from walletsync.adapters.store.static_trade_store import StaticTradeStore

logger = logging.getLogger(__name__)


def _error_body(message: str, details: Optional[List[str]] = None) -> dict:
    return {"error": message, "details": list(details or [])}


def create_app(
    service: Optional[WalletSyncService] = None,
    use_static: bool = False,
    wallets: Optional[List[str]] = None,
    dsn: str = settings.DATABASE_URL,
) -> FastAPI:
    """
    Build the HTTP app. With `service` given (tests) nothing is opened;
    otherwise the lifespan opens one Postgres connection and closes it on
    shutdown.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        conn = None
        if app.state.service is None:
            if use_static:
                app.state.service = WalletSyncService(chain=StaticChainAdapter(), store=StaticTradeStore())
            else:
                conn = open_connection(dsn)
                app.state.service = WalletSyncService(
                    chain=HeliusChainAdapter(),
                    store=PostgresTradeStore(conn),
                    price=CoinGeckoPriceAdapter(),
                )
            logger.info("[BOOT] store = %s", type(app.state.service.store).__name__)
        try:
            yield
        finally:
            if conn is not None:
                conn.close()

    app = FastAPI(title="Wallet Trade Sync", lifespan=lifespan)
    app.state.service = service
    app.state.wallets = list(settings.WALLETS if wallets is None else wallets)

    @app.exception_handler(ValidationError)
    async def _validation_error(request: Request, exc: ValidationError):
        return JSONResponse(status_code=400, content=_error_body(str(exc), exc.details))

    @app.exception_handler(RequestValidationError)
    async def _request_validation_error(request: Request, exc: RequestValidationError):
        details = [
            f"{'.'.join(str(p) for p in e.get('loc', ()))}: {e.get('msg', 'invalid')}"
            for e in exc.errors()
        ]
        return JSONResponse(status_code=400, content=_error_body("Validation error", details))

    @app.exception_handler(PersistenceError)
    async def _persistence_error(request: Request, exc: PersistenceError):
        logger.error("Store error on %s: %s", request.url.path, exc)
        return JSONResponse(status_code=503, content=_error_body(str(exc) or "Store unavailable"))

    @app.exception_handler(DataSourceError)
    async def _data_source_error(request: Request, exc: DataSourceError):
        logger.error("Upstream error on %s: %s", request.url.path, exc)
        return JSONResponse(status_code=502, content=_error_body(str(exc) or "Upstream unavailable"))

    @app.exception_handler(WalletSyncError)
    async def _wallet_sync_error(request: Request, exc: WalletSyncError):
        logger.error("Error on %s: %s", request.url.path, exc)
        return JSONResponse(status_code=500, content=_error_body(str(exc) or "Internal error"))

    @app.get("/health")
    def health():
        svc = app.state.service
        return {
            "status": "ok" if svc is not None else "starting",
            "store": type(svc.store).__name__ if svc is not None else None,
        }

    app.include_router(wallets_router)
    app.include_router(tokens_router)
    return app
