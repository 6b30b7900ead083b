import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from requiety import __version__
from requiety.api import environments, requests, responses, runner
from requiety.api.deps import get_body_storage, get_http_client
from requiety.config import get_settings
from requiety.db.database import engine, Base
import requiety.models  # noqa: F401  registers tables on Base.metadata

settings = get_settings()

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup: create tables and the body directory
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    get_body_storage().ensure_directory()

    yield

    # Shutdown: close the shared HTTP client
    await get_http_client().close()
    await engine.dispose()


app = FastAPI(
    title="Requiety API",
    description="API request execution engine",
    version=__version__,
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(requests.router, prefix="/api/requests", tags=["requests"])
app.include_router(responses.router, prefix="/api/responses", tags=["responses"])
app.include_router(environments.router, prefix="/api/environments", tags=["environments"])
app.include_router(runner.router, prefix="/api/runner", tags=["runner"])


@app.get("/health")
async def health():
    return {"status": "healthy"}
