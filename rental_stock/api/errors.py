from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from rental_stock.domain.errors import InventoryError
from shared.core import get_logger

logger = get_logger(__name__)

def register_error_handlers(app: FastAPI) -> None:
    """Render business errors as ``{"detail": ..., "error": ...}`` with their own status."""

    @app.exception_handler(InventoryError)
    async def inventory_error_handler(request: Request, exc: InventoryError) -> JSONResponse:
        logger.info(
            f"Rejected {request.method} {request.url.path}: {exc.message}",
            extra={'extra_fields': {'error': exc.code, 'status_code': exc.status_code}}
        )
        return JSONResponse(
            status_code=exc.status_code,
            content={"detail": exc.message, "error": exc.code},
        )
