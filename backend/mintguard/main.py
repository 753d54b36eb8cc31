"""FastAPI application for MintGuard backend"""

import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from mintguard.config import settings
from mintguard.errors import MintGuardError
from mintguard.services.token_service import close_token_service, get_token_service
from mintguard.api import tokens, metrics

# Configure logging
log_level = getattr(logging, settings.log_level.upper(), logging.INFO)
logging.basicConfig(
    level=log_level,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
# Align key loggers with configured level
logging.getLogger("mintguard").setLevel(log_level)
logging.getLogger("uvicorn").setLevel(log_level)
logging.getLogger("uvicorn.access").setLevel(log_level)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifecycle manager for startup/shutdown"""
    # Startup
    logger.info("Starting MintGuard backend...")
    await get_token_service()
    logger.info("Token service initialized")

    yield

    # Shutdown
    logger.info("Shutting down MintGuard backend...")
    await close_token_service()


# Create FastAPI app
app = FastAPI(
    title=settings.api_title,
    version=settings.api_version,
    description="Solana token minting with RPC failover, monitoring and webhooks",
    lifespan=lifespan,
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(MintGuardError)
async def mintguard_error_handler(request: Request, exc: MintGuardError):
    logger.warning("%s %s failed: %s (%s)", request.method, request.url.path, exc.message, exc.code)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


# Include routers
app.include_router(tokens.router, prefix="/api/tokens", tags=["Tokens"])
app.include_router(metrics.router, prefix="/api", tags=["Metrics"])


@app.get("/")
async def root():
    """Root endpoint"""
    return {
        "name": "MintGuard API",
        "version": settings.api_version,
        "status": "running",
        "rpc_endpoints": len(settings.solana_rpc_urls) + (1 if settings.solana_rpc_url else 0),
    }


@app.get("/health")
async def health_check():
    """Health check endpoint"""
    return {"status": "healthy"}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        app,
        host="0.0.0.0",
        port=8000,
        log_level=settings.log_level.lower(),
        access_log=True,
    )
