import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from rpg_module.api.routes import router
from rpg_module.config import get_settings
from rpg_module.infra.redis_client import create_redis
from rpg_module.reducers import init_module

# Configure logging
logging.basicConfig(level=get_settings().log_level)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    r = create_redis()
    try:
        init_module(r=r)
    finally:
        r.close()
    yield


app = FastAPI(title="rpg-game-module", version="0.1.0", lifespan=lifespan)
app.include_router(router)


@app.get("/info")
async def info() -> dict[str, str]:
    return {"name": "rpg-game-module", "version": "0.1.0"}
