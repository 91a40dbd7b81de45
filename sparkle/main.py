from fastapi import FastAPI
from fastapi.middleware.gzip import GZipMiddleware
import uvicorn
import logging
from contextlib import asynccontextmanager
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

from sparkle.models.base import init_db
from sparkle.assistant import get_config
from sparkle.api import assistant
from sparkle.api.assistant import close_components, get_components


@asynccontextmanager
async def lifespan(app: FastAPI):
    config = get_config()
    logging.getLogger("sparkle").setLevel(config.log_level)

    # Initialize the database on startup
    init_db()
    # Build the provider now so a missing API key fails at startup
    get_components()
    yield
    # Cancel running generations and close the provider client
    await close_components()


app = FastAPI(lifespan=lifespan)

# Add middleware
app.add_middleware(GZipMiddleware, minimum_size=1000)

# Include API routers
app.include_router(assistant.router)


@app.get("/healthz")
def health_check():
    """Health check endpoint."""
    return {"status": "ok"}


if __name__ == "__main__":
    uvicorn.run("sparkle.main:app", host="0.0.0.0", port=2222, reload=True)
