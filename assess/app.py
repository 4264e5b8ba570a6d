"""FastAPI application serving the persistent store."""
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from assess.config import LOG_LEVEL
from assess.database import init_db
from assess.logging_setup import setup_console_logging
from assess.routes import assessments, attempts, submissions

setup_console_logging(LOG_LEVEL)

app = FastAPI(title="Assessment Attempt API")

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.on_event("startup")
def startup_events() -> None:
    """Initialize database on startup."""
    init_db()


@app.get("/api/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


# Include routers
app.include_router(assessments.router)
app.include_router(attempts.router)
app.include_router(submissions.router)
