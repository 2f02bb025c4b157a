"""FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sqlmodel import Session

from orderdesk.api.main import api_router
from orderdesk.core.config import settings
from orderdesk.core.db import engine, init_db
from orderdesk.core.exceptions import OrderDeskError
from orderdesk.services.schema_capabilities import CapabilityCache

logging.basicConfig(level=settings.LOG_LEVEL)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Prepare the database and the capability cache, release the engine on exit."""
    logger.info("%s starting up (%s)", settings.PROJECT_NAME, settings.ENVIRONMENT)
    with Session(engine) as session:
        init_db(session)
    app.state.capability_cache = CapabilityCache()

    yield

    logger.info("%s shutting down", settings.PROJECT_NAME)
    engine.dispose()


app = FastAPI(
    title=settings.PROJECT_NAME,
    description="Order ledger, document versions, archive and analytics",
    version="1.0.0",
    openapi_url=f"{settings.API_V1_STR}/openapi.json",
    lifespan=lifespan,
)


@app.exception_handler(OrderDeskError)
async def order_desk_error_handler(request: Request, exc: OrderDeskError):
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error("Unhandled exception: %s", exc, exc_info=True)
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


app.include_router(api_router, prefix=settings.API_V1_STR)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "orderdesk.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.ENVIRONMENT == "development",
        log_level=settings.LOG_LEVEL.lower(),
    )
