"""
GradeSheet — multi-curriculum grade computation service.
FastAPI backend entry point.
"""

import logging
import os

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

# Load environment before the routers read their settings.
load_dotenv()

from core.curricula import resolve_profile  # noqa: E402
from routes.grading import router as grading_router  # noqa: E402
from routes.upload import router as upload_router  # noqa: E402

SCHOOL_NAME = os.getenv("SCHOOL_NAME", "My School")
DEFAULT_CURRICULUM = os.getenv("DEFAULT_CURRICULUM", "standard")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
# Comma-separated allowed origins, e.g. http://localhost:5173,https://app.example.com
raw_origins = os.getenv("CORS_ORIGINS", "http://localhost:5173,http://localhost:3000")
ALLOWED_ORIGINS = [o.strip() for o in raw_origins.split(",") if o.strip()]

logging.basicConfig(
    level=getattr(logging, LOG_LEVEL, logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

app = FastAPI(
    title="GradeSheet API",
    description=(
        "Grade computation for CBC, IGCSE and Standard (8-4-4) curricula: "
        "weighted totals, grade labels, class statistics and positions."
    ),
    version="1.0.0",
)

# CORS — allow the React dev server
app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Register route modules
app.include_router(grading_router, prefix="/api/grading", tags=["Grading"])
app.include_router(upload_router, prefix="/api/upload", tags=["Upload"])


@app.get("/api/health")
async def health_check():
    return {
        "status": "ok",
        "school_name": SCHOOL_NAME,
    }


@app.get("/api/config")
async def get_config():
    """Return server configuration to the frontend."""
    return {
        "school_name": SCHOOL_NAME,
        "default_curriculum": resolve_profile(DEFAULT_CURRICULUM).id.value,
    }
