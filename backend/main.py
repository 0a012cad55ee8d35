import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from config import settings

logging.basicConfig(level=logging.DEBUG if settings.debug else logging.INFO)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Avalon backend starting up (parallel quiz default: %s)...",
                settings.use_parallel_quiz)
    yield
    logger.info("Backend shutting down.")


app = FastAPI(
    title="Avalon",
    version="0.1.0",
    description="Rules engine and game server for The Resistance: Avalon",
    lifespan=lifespan,
)

_origins = list(settings.allowed_origins)
if settings.extra_origin:
    _origins.append(settings.extra_origin)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "X-Player-ID"],
)


@app.get("/health")
async def health_check():
    return {"status": "ok", "service": "avalon", "version": "0.1.0"}


from routers.game_router import router as game_router
from routers.ws_router import router as ws_router

app.include_router(game_router, prefix="/api")
app.include_router(ws_router)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=True)
