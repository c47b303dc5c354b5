"""
Main FastAPI application entry point for Identity Reconciliation System
This file sets up the FastAPI application with proper configuration,
middleware, error mapping and health check endpoints. It serves as the main
entry point for both local development and AWS Lambda deployment.
"""

import logging
import traceback
from datetime import datetime, timezone

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from config import settings
from schemas.identify import IdentifyRequest, IdentifyResponse, ErrorResponse
from services.errors import InvalidRequest, ReconciliationError, StoreUnavailable, WriteConflict
from services.identity_service import IdentityService, get_identity_service

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL, logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

app = FastAPI(
    title=settings.API_TITLE,
    description=settings.API_DESCRIPTION,
    version=settings.API_VERSION,
    debug=settings.DEBUG
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
)


def error_json(status_code: int, error: str, message: str, details: dict = None, headers: dict = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=error, message=message, details=details).model_dump(),
        headers=headers
    )


@app.middleware("http")
async def log_requests(request: Request, call_next):
    logger.info(f"{request.method} {request.url.path}")
    return await call_next(request)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    """Keep routing errors (404, 405) in the ErrorResponse shape"""
    error = "Not Found" if exc.status_code == 404 else "HTTPError"
    message = f"Route {request.method} {request.url.path} not found" if exc.status_code == 404 else str(exc.detail)
    return error_json(exc.status_code, error, message, headers=getattr(exc, "headers", None))


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Handle request body validation errors"""
    logger.warning(f"Validation error for {request.url}: {exc}")

    error_details = []
    for error in exc.errors():
        error_details.append({
            "field": " -> ".join(str(x) for x in error["loc"]),
            "message": error["msg"],
            "type": error["type"]
        })

    return error_json(400, "ValidationError", "Request validation failed", {"errors": error_details})


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    """Handle unexpected errors"""
    logger.error(f"Unexpected error for {request.url}: {exc}")
    logger.error(f"Traceback: {traceback.format_exc()}")

    return error_json(500, "InternalServerError", "An unexpected error occurred")


@app.get("/")
async def root():
    return {
        "message": "Identity Reconciliation API is running",
        "version": settings.API_VERSION,
        "environment": settings.ENVIRONMENT,
        "endpoints": {
            "identify": "POST /identify",
            "health": "GET /health"
        }
    }


@app.get("/health")
async def health_check():
    """
    Health check endpoint for monitoring and load balancer health checks
    """
    database = {"backend": settings.CONTACT_STORE_BACKEND}

    if settings.CONTACT_STORE_BACKEND == "sql":
        from database import db_manager

        database["status"] = "connected" if await db_manager.test_connection() else "disconnected"
        database["dialect"] = db_manager.dialect_name
    else:
        database["status"] = "in-memory"

    return {
        "status": "healthy",
        "environment": settings.ENVIRONMENT,
        "version": settings.API_VERSION,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "lambda": settings.is_lambda_environment(),
        "database": database
    }


@app.post("/identify", response_model=IdentifyResponse)
async def identify_endpoint(
    request: IdentifyRequest,
    service: IdentityService = Depends(get_identity_service)
):
    """
    Main identity reconciliation endpoint

    Links customer identities based on email and/or phone number.
    Returns consolidated contact information including all linked emails,
    phone numbers, and secondary contact IDs.

    **Examples:**
    - New customer: Creates primary contact
    - Existing email + new phone: Creates secondary contact
    - Two existing primaries with shared info: Links them (older remains primary)
    """
    logger.info(f"Processing identify request: email={request.email}, phone={request.phoneNumber}")

    try:
        response = await service.identify_contact(request)
    except InvalidRequest as e:
        return error_json(400, e.error, e.message)
    except StoreUnavailable as e:
        logger.error(f"Contact store unavailable: {e}")
        return error_json(503, e.error, "Database is currently unavailable. Please try again later.")
    except WriteConflict as e:
        logger.error(f"Giving up after repeated write conflicts: {e}")
        return error_json(503, e.error, "Concurrent updates to this contact, please retry.", headers={"Retry-After": "1"})
    except ReconciliationError as e:
        logger.error(f"Reconciliation invariant violated: {e}")
        logger.error(f"Traceback: {traceback.format_exc()}")
        return error_json(500, "InternalServerError", "Unable to process identity reconciliation request")

    logger.info(f"Successfully processed request. Primary contact ID: {response.contact.primaryContactId}")
    return response


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
        workers=1
    )
