from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import argparse
import logging

from git_event_aggregator import config
from git_event_aggregator.api import router as api_router
from git_event_aggregator.database import dispose_engines, get_engine, init_db
from git_event_aggregator.platforms.factory import build_clients
from git_event_aggregator.scheduler import SyncScheduler
from git_event_aggregator.sync import SyncEngine


parser = argparse.ArgumentParser(description="Git Event Aggregator entry point.")
parser.add_argument(
    "--api-only",
    action="store_true",
    help="Run only the query API (no platform sync).",
)
args, _ = parser.parse_known_args()
API_ONLY = args.api_only

logging.basicConfig(
    level=config.LOG_LEVEL, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logging.getLogger("urllib3").setLevel(logging.WARNING)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    engine = get_engine(config.DATABASE_URL)
    init_db(engine)
    scheduler = None
    sync_engine = None
    try:
        if not API_ONLY:
            sync_engine = SyncEngine(engine, build_clients())
            scheduler = SyncScheduler(sync_engine)
            scheduler.start()
        else:
            logger.info("Running in API ONLY mode: platform sync will not start.")
        yield
    finally:
        if scheduler is not None:
            # Waits for a cycle that is committing to finish
            scheduler.stop(timeout=config.HTTP_TIMEOUT_SECONDS)
        if sync_engine is not None:
            sync_engine.close()
        dispose_engines()
        logger.info("Application shutdown.")


app = FastAPI(
    title="Git Event Aggregator",
    description="Aggregates activity of several git hosting platforms into one event log",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(api_router, prefix=config.API_PREFIX)

if __name__ == "__main__":
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8000)
