"""ClickUp Listener - FastAPI Application.

Receives ClickUp webhooks and reconciles tasks and comments into the local
issue tracker.
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime
from pathlib import Path

from fastapi import FastAPI, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from .config import get_settings
from .config_loader import load_configurations
from .engine import ReconciliationEngine
from .models import init_db, get_db, SessionLocal
from .schema_cache import ColumnCache
from .stores import get_stores
from .webhook import WebhookProcessor

# Configure logging
settings = get_settings()
logging.basicConfig(
    level=getattr(logging, settings.log_level),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

# Ticket columns do not change while the process runs
column_cache = ColumnCache()


# =============================================================================
# App Lifecycle
# =============================================================================


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    logger.info("Starting ClickUp Listener...")
    init_db()

    db = SessionLocal()
    try:
        mappings, tickets = get_stores(db)
        load_configurations(Path(settings.configurations_file), mappings, tickets)
    finally:
        db.close()

    yield

    logger.info("ClickUp Listener stopped")


app = FastAPI(
    title="ClickUp Listener",
    description="Reconciles ClickUp webhooks into local tickets and comments",
    version="0.1.0",
    lifespan=lifespan,
)


# =============================================================================
# Dependencies
# =============================================================================


def get_processor(db: Session = Depends(get_db)) -> WebhookProcessor:
    """Build the webhook processor for a request."""
    mappings, tickets = get_stores(db)
    return WebhookProcessor(ReconciliationEngine(mappings, tickets, column_cache))


# =============================================================================
# API Routes
# =============================================================================


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "timestamp": datetime.utcnow().isoformat()}


@app.post("/webhooks/clickup")
async def clickup_webhook(
    request: Request, processor: WebhookProcessor = Depends(get_processor)
):
    """Handle ClickUp webhook events."""
    # Read body before parsing (for signature verification)
    body = await request.body()
    signature = request.headers.get(settings.signature_header)

    result = processor.process(body, signature)
    return JSONResponse(status_code=result.status_code, content=result.to_dict())
