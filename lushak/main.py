from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from lushak.api.v1 import contact
from lushak.core.config import settings
from lushak.core.errors import register_exception_handlers
from lushak.core.logging import setup_logging
from lushak.core.middleware import RequestIdMiddleware
from lushak.core.rate_limiter import build_throttle

# Setup logging
logger = setup_logging()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events"""
    logger.info(
        "startup",
        project=settings.PROJECT_NAME,
        version=settings.VERSION,
        environment=settings.ENVIRONMENT,
        debug=settings.DEBUG,
        throttle=app.state.throttle.backend.stats()["backend"],
    )

    yield

    logger.info("shutdown")


app = FastAPI(
    title=settings.PROJECT_NAME,
    version=settings.VERSION,
    description="""
## LUSHAK Contact API

Backend for the website contact form: rate-limited, reCAPTCHA-protected
submissions with optional attachments, delivered to the team inbox by email.
    """,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url=f"{settings.API_PREFIX}/openapi.json",
)

# Throttle state lives with the app instance, not in a module global
app.state.throttle = build_throttle(settings)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["POST", "OPTIONS"],
    allow_headers=["*"],
)

# Request ID Tracing
app.add_middleware(RequestIdMiddleware)

# Register global exception handlers
register_exception_handlers(app)

app.include_router(contact.router, prefix=settings.API_PREFIX, tags=["contact"])


# Health check endpoint
@app.get("/health", summary="Health check")
async def health_check():
    """Health check endpoint"""
    return {
        "status": "healthy",
        "version": settings.VERSION,
        "environment": settings.ENVIRONMENT,
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("lushak.main:app", host="0.0.0.0", port=8000, reload=settings.DEBUG)
