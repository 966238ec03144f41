# propwatch/main.py
from fastapi import FastAPI

from . import config
from . import models  # noqa: F401 ensure models are imported so tables are known
from .api.routes import router as api_router
from .db import Base, engine
from .scheduler import shutdown_scheduler, start_scheduler
from .utils import logger

# create FastAPI instance
app = FastAPI(title="propwatch")
app.include_router(api_router)


@app.on_event("startup")
def on_startup():
    # Ensure database tables are created on startup
    try:
        Base.metadata.create_all(bind=engine)
    except Exception:
        # migrations may own the schema; keep serving
        logger.exception("create_all failed on startup")
    if config.SCHEDULER_ENABLED:
        start_scheduler()


@app.on_event("shutdown")
def on_shutdown():
    shutdown_scheduler()
