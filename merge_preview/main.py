from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI

from merge_preview.api.merge_routes import router as merge_router
from merge_preview.core.config import settings
from merge_preview.core.errors import register_exception_handlers
from merge_preview.services.merge_history_service import merge_history_service

logger = logging.getLogger(__name__)


def _startup() -> None:
    merge_history_service.init_db()
    logger.info(
        "merge preview started repository_root=%s min_latency_ms=%s",
        settings.repository_root_dir,
        settings.merge_status_min_latency_ms,
    )


@asynccontextmanager
async def _app_lifespan(app: FastAPI):
    _startup()
    yield


app = FastAPI(
    title="Merge Preview",
    version="0.1.0",
    lifespan=_app_lifespan,
)
register_exception_handlers(app)
app.include_router(merge_router)
