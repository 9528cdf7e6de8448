"""
FastAPI application entry point.

Run with: uvicorn api.main:app --reload
"""
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles
from pathlib import Path
from dotenv import load_dotenv

# Load environment variables from backend/.env (optional) before other imports that read env
env_path = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(env_path)

from api.routes import cards, community
from db import init_db
from settings import settings


# Create app
app = FastAPI(
    title="Community Card Studio API",
    description="API for generating community cards and the watermarked community wall",
    version="0.1.0",
)

# CORS middleware for frontend
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure properly for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Mount static files for media
media_path = Path(settings.MEDIA_ROOT)
media_path.mkdir(parents=True, exist_ok=True)
app.mount("/media", StaticFiles(directory=str(media_path)), name="media")

# Include routers
app.include_router(cards.router, prefix="/cards", tags=["cards"])
app.include_router(community.router, prefix="/community", tags=["community"])


@app.middleware("http")
async def media_cache_middleware(request: Request, call_next):
    """Stored objects are never overwritten, so media responses can be cached for good."""
    response = await call_next(request)
    if request.url.path.startswith("/media/") and response.status_code == 200:
        response.headers["Cache-Control"] = "public, max-age=604800, immutable"
    return response


@app.on_event("startup")
def startup_event():
    """Initialize database tables on startup."""
    init_db()


@app.get("/")
async def root():
    """Health check endpoint."""
    return {"status": "ok", "service": "Community Card Studio API"}


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {"status": "healthy"}
