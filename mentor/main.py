import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from .routers.coaching import get_engine
from .routers.coaching import router as coaching_router
from .routers.context import router as context_router

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    engine = get_engine()
    logger.info("Mentor engine ready (budgets remote=%d local=%d)", engine.settings.budgets.remote, engine.settings.budgets.local)
    yield


app = FastAPI(title="Mentor Intelligence Service", version="0.1.0", lifespan=lifespan)


@app.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok"}


app.include_router(coaching_router)
app.include_router(context_router)
