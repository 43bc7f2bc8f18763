from __future__ import annotations

import asyncio
import logging

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from wordrooms.api.routes import router
from wordrooms.assets.startup import init_words_for_app
from wordrooms.config import settings_from_env
from wordrooms.errors import InvalidRequest, StoreFailure
from wordrooms.presence import PresencePolicy, run_maintenance
from wordrooms.store.factory import create_store

settings = settings_from_env()

app = FastAPI(title="wordrooms", version="0.1.0")
app.include_router(router)
# Configure logging
logging.basicConfig(level=settings.log_level)
logger = logging.getLogger(__name__)


@app.exception_handler(RequestValidationError)
async def _validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    # Missing or malformed fields are a 400 with the same detail shape as other room errors.
    err = InvalidRequest("Invalid request body")
    detail = {**err.as_detail(), "errors": jsonable_encoder(exc.errors())}
    return JSONResponse(status_code=err.status_code, content={"detail": detail})


@app.on_event("startup")
async def _startup() -> None:
    init_words_for_app()
    app.state.settings = settings
    app.state.store = create_store(settings)
    app.state.policy = PresencePolicy.from_settings(settings)
    app.state.stop_maintenance = asyncio.Event()
    app.state.maintenance = asyncio.create_task(
        run_maintenance(app.state.store, app.state.policy, app.state.stop_maintenance)
    )


@app.on_event("shutdown")
async def _shutdown() -> None:
    app.state.stop_maintenance.set()
    await app.state.maintenance
    try:
        app.state.store.close()
    except StoreFailure:
        logger.error("Room store did not shut down cleanly")


@app.get("/info")
async def info() -> dict[str, str]:
    return {"name": "wordrooms", "version": "0.1.0", "store": settings.store}
