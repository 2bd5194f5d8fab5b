import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, status
from app.core.db import init_db, close_db
from app.api.v1.orders import router as orders_router
from app.api.v1.registrations import router as registrations_router
from app.api.v1.webhooks import router as webhooks_router
from app.core.config import PROJECT_NAME, VERSION
from app.core.exception_handlers import setup_exception_handlers
from app.api.deps import get_broadcaster

logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
log = logging.getLogger("uvicorn")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Handles startup and shutdown events."""
    log.info(f"Starting {PROJECT_NAME} v{VERSION}...")
    await init_db() # Connect to DB and create tables
    yield
    await get_broadcaster().close() # Release the Redis connection pool, if any
    await close_db()
    log.info(f"{PROJECT_NAME} stopped.")

app = FastAPI(
    title=PROJECT_NAME,
    version=VERSION,
    lifespan=lifespan,
    # Configure API documentation and paths
    docs_url="/docs",
    redoc_url="/redoc"
)

# Include routers for modular API structure
app.include_router(registrations_router, prefix="/api/v1/events", tags=["Event Registration"])
app.include_router(webhooks_router, prefix="/api/v1/webhooks", tags=["Payment Webhooks"])
app.include_router(orders_router, prefix="/api/v1/orders", tags=["Orders"])


setup_exception_handlers(app)

@app.get("/health", status_code=status.HTTP_200_OK)
async def health_check():
    """Simple health check endpoint."""
    return {"status": "ok", "app_name": PROJECT_NAME}
