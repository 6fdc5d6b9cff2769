"""
Field Collections API Application Factory
"""

from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .deps import set_collections_system
from .audit import router as audit_router
from .liquidation import router as liquidation_router
from .loans import router as loans_router
from .payments import router as payments_router
from .routes import router as routes_router
from .wallets import router as wallets_router
from .. import __version__
from ..exceptions import (
    BusinessRuleViolation, CollectionsError, EntityNotFound, PermissionDenied,
    StaleState, ValidationError
)
from ..logging_config import get_logger, log_action
from ..system import CollectionsSystem


logger = get_logger("field_collections.api")

ERROR_STATUS = [
    (ValidationError, 422),
    (EntityNotFound, 404),
    (PermissionDenied, 403),
    (StaleState, 409),
    (BusinessRuleViolation, 409),
]


def status_for(exc: CollectionsError) -> int:
    for error_type, status_code in ERROR_STATUS:
        if isinstance(exc, error_type):
            return status_code
    return 400


async def collections_error_handler(request: Request, exc: CollectionsError) -> JSONResponse:
    """Typed core errors become JSON bodies with a stable shape"""
    status_code = status_for(exc)
    body = exc.to_dict()
    if isinstance(exc, StaleState):
        body["retry"] = True

    log_action(logger, "warning", "Request rejected", action=request.method,
               resource=request.url.path,
               extra={"error": body["error"], "status": status_code})
    return JSONResponse(status_code=status_code, content=body)


def create_app(system: Optional[CollectionsSystem] = None) -> FastAPI:
    """Create and configure the FastAPI application"""
    if system is not None:
        set_collections_system(system)

    app = FastAPI(
        title="Field Collections API",
        description="Loan schedules, installment payments, collector wallets and daily routes",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc"
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(CollectionsError, collections_error_handler)

    app.include_router(loans_router, prefix="/loans", tags=["Loans"])
    app.include_router(payments_router, prefix="/installments", tags=["Installments"])
    app.include_router(wallets_router, prefix="/wallets", tags=["Wallets"])
    app.include_router(routes_router, prefix="/routes", tags=["Routes"])
    app.include_router(liquidation_router, prefix="/liquidation", tags=["Liquidation"])
    app.include_router(audit_router, prefix="/audit", tags=["Audit"])

    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        return {
            "status": "healthy",
            "service": "field_collections_api",
            "version": __version__
        }

    @app.get("/")
    async def get_api_info():
        """Get API information"""
        return {
            "name": "Field Collections API",
            "version": __version__,
            "endpoints": {
                "docs": "/docs",
                "health": "/health",
                "loans": "/loans",
                "installments": "/installments",
                "wallets": "/wallets",
                "routes": "/routes",
                "liquidation": "/liquidation",
                "audit": "/audit",
            }
        }

    return app


def run_server(host: Optional[str] = None, port: Optional[int] = None, debug: bool = False):
    """Run the FastAPI server"""
    import uvicorn
    from ..config import get_config

    settings = get_config()
    uvicorn.run(
        "field_collections.api:create_app",
        factory=True,
        host=host or settings.api_host,
        port=port or settings.api_port,
        reload=debug,
        log_level=settings.log_level.lower()
    )
