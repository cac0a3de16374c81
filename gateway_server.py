"""
FastAPI Payment Gateway Server
Serves the gateway operations over HTTP and, through the Booker connection,
over JSON-RPC. Process-scoped resources are opened in the lifespan handler
and shared by every request.
"""

import functools
import logging
import os
import sys
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from config import Config
from database import Database
from handlers.gateway_http import router as gateway_router
from handlers.gateway_rpc import RPC_METHODS
from services.address_service import AddressService
from services.booker_client import BookerClient
from services.gateway_service import GatewayService
from services.job_queue import RedisJobQueue
from utils.exception_handler import GatewayError, BookerConnectionError

logging.basicConfig(
    level=getattr(logging, Config.LOG_LEVEL, logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[logging.StreamHandler(sys.stdout)]
)
logger = logging.getLogger(__name__)


async def _start_booker(service: GatewayService) -> Optional[BookerClient]:
    if not Config.BOOKER_ENABLED:
        logger.info("ℹ️ Booker connection disabled")
        return None

    booker = BookerClient()
    for name, method in RPC_METHODS.items():
        booker.register(name, functools.partial(method, service))
    try:
        await booker.get_connection()
    except BookerConnectionError as e:
        # HTTP keeps serving; the next Booker call reconnects
        logger.error(f"❌ Booker unavailable at startup: {e.message}")
    return booker


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Startup: open database, queue, address service and Booker connection once
    per worker and wire them into the gateway service.
    Shutdown: close them in reverse order.
    """
    if getattr(app.state, "gateway_service", None) is not None:
        # Service injected by the caller, nothing to manage
        yield
        return

    logger.info(f"🔧 Payment gateway worker {os.getpid()} starting...")
    Config.log_environment_config()
    problems = Config.validate()
    if problems and Config.IS_PRODUCTION:
        raise RuntimeError(f"Refusing to start with invalid configuration: {'; '.join(problems)}")

    database = Database()
    await database.create_tables()

    queue = RedisJobQueue.from_config()
    await queue.connect()

    address_service = AddressService()
    service = GatewayService.build(database, queue, address_service)
    booker = await _start_booker(service)

    app.state.database = database
    app.state.queue = queue
    app.state.booker = booker
    app.state.gateway_service = service
    logger.info(f"✅ Worker {os.getpid()} initialized successfully")

    try:
        yield
    finally:
        logger.info(f"🔄 Payment gateway worker {os.getpid()} shutting down...")
        if booker is not None:
            await booker.close()
        await queue.close()
        await database.dispose()
        app.state.gateway_service = None


async def gateway_error_handler(request: Request, exc: GatewayError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(f"❌ {request.url.path} failed: {exc.code}: {exc.message}", exc_info=exc)
    else:
        logger.warning(f"⚠️ {request.url.path} rejected: {exc.code}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    logger.warning(f"⚠️ {request.url.path} rejected: invalid request")
    return JSONResponse(
        status_code=400,
        content={"error": "invalid_request", "message": "Invalid request", "details": {"errors": exc.errors()}},
    )


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error(f"❌ Unhandled error on {request.url.path}: {type(exc).__name__}: {exc}", exc_info=exc)
    return JSONResponse(status_code=500, content={"error": "internal_error", "message": "Internal server error"})


def create_app(gateway_service: Optional[GatewayService] = None) -> FastAPI:
    """Build the application; a given service skips resource management in the lifespan"""
    app = FastAPI(
        title="Payment Gateway",
        description="Deposit address allocation and order intake",
        lifespan=lifespan,
    )
    app.state.gateway_service = gateway_service

    app.add_exception_handler(GatewayError, gateway_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)

    app.include_router(gateway_router)

    @app.get("/health")
    async def health_check(request: Request):
        """Store and queue reachability; Booker state is informational"""
        database = getattr(request.app.state, "database", None)
        queue = getattr(request.app.state, "queue", None)
        booker = getattr(request.app.state, "booker", None)

        database_ok = await database.test_connection() if database is not None else None
        queue_ok = await queue.health_check() if queue is not None else None
        healthy = database_ok is not False and queue_ok is not False

        return JSONResponse(
            status_code=200 if healthy else 503,
            content={
                "status": "healthy" if healthy else "degraded",
                "service": "payment-gateway",
                "database": database_ok,
                "queue": queue_ok,
                "booker": booker.connected if booker is not None else None,
            },
        )

    return app


app = create_app()


def run() -> None:
    import uvicorn

    uvicorn.run("gateway_server:app", host=Config.HOST, port=Config.PORT, log_level=Config.LOG_LEVEL.lower())


if __name__ == "__main__":
    run()
