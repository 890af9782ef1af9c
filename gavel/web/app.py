from __future__ import annotations
import logging, os

from fastapi import FastAPI
from starlette.middleware.cors import CORSMiddleware

from .api import api as api_app, get_engine
from .scheduler_bridge import (
    ensure_scheduler_started,
    schedule_lifecycle_jobs,
    stop_scheduler,
)

if os.getenv("DEBUG_WEB", "0") == "1":
    import debugpy

    debugpy.listen(("0.0.0.0", 5679))
    if os.getenv("DEBUGPY_WAIT", "0") == "1":
        debugpy.wait_for_client()

LOG_LEVEL = os.getenv("GAVEL_LOG_LEVEL", "INFO").upper()
logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s -- %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("gavel_web")


app = FastAPI(title="gavel", version="1.0.0")
app.add_middleware(
    CORSMiddleware,
    allow_origins=os.getenv("CORS_ALLOW_ORIGINS", "*").split(","),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.mount("/api", api_app)


@app.on_event("startup")
async def _startup():
    # GAVEL_SCHEDULER=0 when another process owns the lifecycle jobs
    if os.getenv("GAVEL_SCHEDULER", "1") == "1":
        await ensure_scheduler_started()
        await schedule_lifecycle_jobs(get_engine())
    logger.info("gavel web started")


@app.on_event("shutdown")
async def _shutdown():
    if os.getenv("GAVEL_SCHEDULER", "1") == "1":
        await stop_scheduler()
    get_engine().close()
    logger.info("gavel web stopped")
