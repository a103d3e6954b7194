import logging
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from hiready.api.routes import access, readiness, billing_webhook, system
from hiready.core.config import CORS_ORIGINS, LOG_FILE, LOG_LEVEL
from hiready.core.errors import InvalidInputError, StorageUnavailableError
from hiready.core.logging_config import setup_logging

setup_logging(LOG_LEVEL, LOG_FILE)
logger = logging.getLogger(__name__)


# ============================================
# FASTAPI APP INIT
# ============================================

app = FastAPI(title="Hiready Access API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST"],
    allow_headers=["Authorization", "Content-Type"],
)


# ============================================
# ERROR MAPPING
# ============================================

@app.exception_handler(InvalidInputError)
async def invalid_input_handler(request: Request, exc: InvalidInputError):
    logger.info(f"Invalid input on {request.url.path}: {exc}")
    return JSONResponse(status_code=400, content={"error": "invalid_input", "detail": str(exc)})


@app.exception_handler(StorageUnavailableError)
async def storage_unavailable_handler(request: Request, exc: StorageUnavailableError):
    logger.error(f"Storage unavailable on {request.url.path}: {exc}")
    return JSONResponse(status_code=500, content={"error": "storage_unavailable", "detail": "Please retry shortly"})


# ============================================
# REGISTER ALL ROUTERS
# ============================================

app.include_router(access.router)
app.include_router(readiness.router)
app.include_router(billing_webhook.router)
app.include_router(system.router)


@app.get("/")
def root():
    return {"status": "Hiready API running"}
