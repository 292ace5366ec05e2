"""
FastAPI application factory
"""
import logging
import traceback

from fastapi import FastAPI, HTTPException, status
from sqlalchemy.exc import SQLAlchemyError
from fastapi.responses import PlainTextResponse

from clientbilling.config import get_settings
from clientbilling.infrastructure.db.session import check_db_connection
from clientbilling.api.v1 import agreements, balances, expenses, invoices, time_entries

logging.basicConfig(level=get_settings().LOG_LEVEL)
logger = logging.getLogger(__name__)


def create_app() -> FastAPI:
    """
    Application factory - builds and configures the FastAPI app

    Returns:
        Configured FastAPI app
    """
    settings = get_settings()

    app = FastAPI(
        title="Client Billing",
        debug=settings.DEBUG,
    )

    # Error-logging middleware - catches exceptions from sync routes as well
    from starlette.middleware.base import BaseHTTPMiddleware
    from starlette.responses import Response

    class ErrorLoggingMiddleware(BaseHTTPMiddleware):
        async def dispatch(self, request, call_next):
            try:
                response = await call_next(request)
                return response
            except Exception as exc:
                tb_str = traceback.format_exc()
                logger.error("\n%s\nERROR on %s %s\n%s%s", "=" * 60, request.method, request.url.path, tb_str, "=" * 60)
                return Response(content=f"Internal Server Error: {exc}", status_code=500)

    app.add_middleware(ErrorLoggingMiddleware)

    # Routers
    app.include_router(balances.router)
    app.include_router(invoices.router)
    app.include_router(time_entries.router)
    app.include_router(agreements.router)
    app.include_router(expenses.router)

    # Health checks
    @app.get("/health", response_class=PlainTextResponse, tags=["system"])
    def health():
        """Health check endpoint"""
        return "ok"

    @app.get("/ready", response_class=PlainTextResponse, tags=["system"])
    def ready():
        """Readiness check endpoint (database reachable)"""
        try:
            check_db_connection()
        except SQLAlchemyError:
            logger.exception("Readiness check failed")
            raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Database unavailable")
        return "ok"

    return app


# Create app instance
app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "clientbilling.main:app",
        host="127.0.0.1",
        port=8000,
        reload=True,
    )
