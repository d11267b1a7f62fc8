import logging
import os

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from stage_engine.database import init_db
from stage_engine.routes import matches, rankings, schedule_preview, stages, teams, tournaments

logger = logging.getLogger(__name__)

APP_NAME = "Stage Engine API"

app = FastAPI(title=APP_NAME)

_cors_origins = [
    "http://localhost:3000",
    "http://127.0.0.1:3000",
]
_extra = os.getenv("CORS_ORIGINS", "")
if _extra:
    _cors_origins.extend(o.strip() for o in _extra.split(",") if o.strip())

app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(tournaments.router, prefix="/api", tags=["tournaments"])
app.include_router(teams.router, prefix="/api", tags=["teams"])
app.include_router(stages.router, prefix="/api", tags=["stages"])
app.include_router(matches.router, prefix="/api", tags=["matches"])
app.include_router(rankings.router, prefix="/api", tags=["rankings"])

# Stateless scheduler preview (no persistence)
app.include_router(schedule_preview.router, prefix="/api", tags=["schedule"])


@app.on_event("startup")
def on_startup():
    init_db()  # Imports models and creates tables
    logger.info("%s started with %d routes", APP_NAME, len(app.routes))


@app.get("/api/health")
def health_check():
    """Liveness check"""
    return {"app_name": APP_NAME, "status": "healthy"}
