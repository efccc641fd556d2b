from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import DBAPIError

from infra.db import engine
from src.app.api.helpers.pipelines import http_error
from src.app.api.v1.pipelines import router as pipelines_router
from src.app.core.exceptions import PipelineError
from src.config import get_settings
from src.runner.services.db_errors import is_db_disconnect

logger = logging.getLogger("incremental_api")
settings = get_settings()


async def wait_for_db(
    *,
    attempts: int = 10,
    delays: tuple[float, ...] = (1, 2, 4, 8, 8, 8, 8, 8, 8, 8),
) -> None:
    last_exc: Exception | None = None

    for i in range(1, attempts + 1):
        try:
            async with engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
            logger.info("DB connection OK on startup")
            return
        except Exception as exc:  # noqa: BLE001
            if not is_db_disconnect(exc) and not isinstance(exc, DBAPIError):
                raise
            last_exc = exc
            delay = delays[i - 1] if i - 1 < len(delays) else delays[-1]
            logger.warning("DB not ready (%d/%d). Retrying in %ss... err=%r", i, attempts, delay, exc)
            await asyncio.sleep(delay)

    logger.error("DB did not become ready after %d attempts", attempts)
    raise last_exc  # type: ignore[misc]


@asynccontextmanager
async def lifespan(app: FastAPI):
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] [api] %(message)s",
    )
    await wait_for_db()

    yield

    await engine.dispose()
    logger.info("DB engine disposed")


app = FastAPI(title="Incremental Pipelines API", version="0.1.0", lifespan=lifespan)
app.include_router(pipelines_router)


@app.exception_handler(PipelineError)
async def pipeline_error_handler(request: Request, exc: PipelineError) -> JSONResponse:
    # доменные ошибки, не пойманные в роутере
    err = http_error(exc)
    return JSONResponse(status_code=err.status_code, content={"detail": err.detail})


@app.get("/api/v1/health", tags=["system"])
async def healthcheck() -> dict:
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        db_status = "ok"
    except Exception as exc:  # noqa: BLE001
        if not is_db_disconnect(exc):
            raise
        db_status = "unavailable"
    return {"status": "ok", "db": db_status, "env": settings.app_env}
