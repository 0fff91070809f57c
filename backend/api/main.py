"""
FastAPI main application.
"""
import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from core.config import API_V1_PREFIX, CORS_ORIGINS, LOG_LEVEL
from core.config_validator import ConfigurationError, config_validator
from api.routes import tooltips

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Glossa API",
    description="Adaptive batch tooltip generation API",
    version="1.0.0",
)


@app.on_event("startup")
async def validate_configuration():
    """Validate configuration on application startup."""
    logger.info("Validating configuration...")

    validation_result = config_validator.validate_all()

    for warning in validation_result["warnings"]:
        logger.warning(warning)

    if not validation_result["valid"]:
        for error in validation_result["errors"]:
            logger.error(error)
        raise ConfigurationError(
            f"Application startup aborted: {len(validation_result['errors'])} configuration error(s)"
        )

    logger.info("Configuration validated successfully")


# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(tooltips.router, prefix=f"{API_V1_PREFIX}/tooltips", tags=["tooltips"])


@app.get("/")
async def root():
    """Root endpoint."""
    return {"message": "Glossa API", "version": "1.0.0"}


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {"status": "healthy"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
