"""FastAPI server: Shopify webhooks plus operator endpoints.

When ``scheduler.enabled`` is set the nightly import scheduler is embedded in
this process so that a single service handles both webhooks and imports.
"""

from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

from fastapi import Body, FastAPI, Query, Request, HTTPException
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from .bootstrap import Services, build_services
from .middleware.webhook_validator import SIGNATURE_HEADER
from .models.product import utcnow
from .models.unit_of_work import ProcessingOutcome, UnitState
from .scheduler import create_background_scheduler
from .utils.exceptions import BaseAppException, NotFoundError
from .utils.logger import get_webhook_logger

TOPIC_HEADER = "X-Shopify-Topic"
SHOP_DOMAIN_HEADER = "X-Shopify-Shop-Domain"
EVENT_ID_HEADERS = ("X-Shopify-Webhook-Id", "X-Shopify-Event-Id")

logger = get_webhook_logger()


class StockSetRequest(BaseModel):
    quantity: int = Field(ge=0)


class StockAdjustRequest(BaseModel):
    delta: int


def webhook_status(outcome: ProcessingOutcome) -> int:
    """HTTP status for a webhook delivery; anything but 2xx makes Shopify redeliver."""
    if outcome.state == UnitState.COMMITTED:
        return 200
    if outcome.state == UnitState.REJECTED:
        return 401
    if outcome.error_kind == "ValidationError":
        return 400
    return 500


def operator_status(outcome: ProcessingOutcome) -> int:
    if outcome.committed:
        return 200
    kind = outcome.error_kind or ""
    if kind == "NotFoundError":
        return 404
    if kind == "ValidationError":
        return 400
    if kind == "IdentityConflictError":
        return 409
    if kind.startswith("RemotePlatformError"):
        return 502
    return 500


def create_app(services: Optional[Services] = None) -> FastAPI:
    """
    Build the application around an already-wired service graph.

    Args:
        services: Built from the process configuration when omitted
    """
    services = services or build_services(webhooks=True)
    config = services.config
    reconciliation = services.reconciliation

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Manage startup / shutdown of the application."""
        logger.info("=" * 60)
        logger.info("Catalog Sync Server Starting")
        logger.info("=" * 60)
        logger.info(f"Environment:          {config.env.environment}")
        logger.info(f"Port:                 {config.env.port}")
        logger.info(f"Webhook validation:   {config.webhook.validate_signature}")
        logger.info(f"Nightly import:       {'enabled' if config.scheduler.enabled else 'disabled'}")
        logger.info("=" * 60)

        scheduler = None
        if config.scheduler.enabled:
            scheduler = create_background_scheduler(reconciliation, config)
            scheduler.start()
            logger.info("Nightly import scheduler started")

        yield

        if scheduler is not None:
            logger.info("Shutting down import scheduler...")
            scheduler.shutdown(wait=True)
        services.close()
        logger.info("Server shut down.")

    app = FastAPI(
        title="Catalog Sync",
        description="Shopify product and stock reconciliation",
        version="1.0.0",
        lifespan=lifespan,
    )

    @app.get("/health")
    async def health_check():
        """Health check endpoint for monitoring."""
        return {
            "status": "healthy",
            "timestamp": utcnow().isoformat(),
            "environment": config.env.environment
        }

    # ------------------------------------------------------------------
    # Shopify webhooks
    # ------------------------------------------------------------------

    @app.post("/webhooks/shopify")
    async def shopify_webhook(request: Request):
        """
        Receive one Shopify webhook and reconcile it before answering.

        The raw body is passed on untouched; signature verification needs
        the exact bytes. Only the outcome status is returned.
        """
        body = await request.body()
        topic = request.headers.get(TOPIC_HEADER)
        event_id = next((request.headers[h] for h in EVENT_ID_HEADERS if request.headers.get(h)), None)

        logger.info(f"Received webhook: {topic} ({event_id or 'no id'})")

        outcome = await run_in_threadpool(
            reconciliation.handle_event,
            topic,
            body,
            request.headers.get(SIGNATURE_HEADER),
            event_id,
            request.headers.get(SHOP_DOMAIN_HEADER),
        )

        content: Dict[str, Any] = {
            "status": outcome.state.value,
            "topic": outcome.topic,
            "event_id": outcome.event_id,
        }
        if outcome.committed:
            content["action"] = outcome.action
            content["duplicate"] = outcome.duplicate
        else:
            content["error"] = outcome.error_kind
        return JSONResponse(status_code=webhook_status(outcome), content=content)

    # ------------------------------------------------------------------
    # Operator endpoints
    # ------------------------------------------------------------------

    def respond(outcome: ProcessingOutcome) -> JSONResponse:
        return JSONResponse(status_code=operator_status(outcome), content=outcome.to_dict())

    @app.post("/sync/products/{external_id}")
    async def import_product(external_id: int):
        """Pull one product from Shopify."""
        return respond(await run_in_threadpool(reconciliation.import_product, external_id))

    @app.post("/sync/products")
    async def import_all_products():
        """Pull every product from Shopify; per-product failures are reported, not raised."""
        result = await run_in_threadpool(reconciliation.import_all_products)
        return JSONResponse(status_code=200 if result.success else 207, content=result.to_dict())

    @app.get("/products")
    async def list_products(limit: int = Query(50, ge=1, le=250), offset: int = Query(0, ge=0)):
        """Local products with their variants and stock."""
        products = await run_in_threadpool(reconciliation.list_products, limit, offset)
        return {"products": products, "count": len(products), "limit": limit, "offset": offset}

    @app.get("/products/{product_id}")
    async def get_product(product_id: int):
        try:
            return await run_in_threadpool(reconciliation.get_product, product_id)
        except NotFoundError as e:
            raise HTTPException(status_code=404, detail=e.message)

    @app.post("/products")
    async def create_product(data: Dict[str, Any] = Body(...), sync_remote: bool = True):
        return respond(await run_in_threadpool(reconciliation.create_product, data, sync_remote))

    @app.patch("/products/{product_id}")
    async def update_product(product_id: int, data: Dict[str, Any] = Body(...), sync_remote: bool = True):
        return respond(await run_in_threadpool(reconciliation.update_product, product_id, data, sync_remote))

    @app.delete("/products/{product_id}")
    async def delete_product(product_id: int, sync_remote: bool = True):
        return respond(await run_in_threadpool(reconciliation.delete_product, product_id, sync_remote))

    @app.put("/variants/{variant_id}/stock")
    async def set_stock(variant_id: int, request: StockSetRequest, sync_remote: bool = True):
        return respond(await run_in_threadpool(
            reconciliation.set_stock, variant_id, request.quantity, sync_remote
        ))

    @app.post("/variants/{variant_id}/stock/adjust")
    async def adjust_stock(variant_id: int, request: StockAdjustRequest, sync_remote: bool = True):
        return respond(await run_in_threadpool(
            reconciliation.adjust_stock, variant_id, request.delta, sync_remote
        ))

    @app.get("/locations")
    async def list_locations():
        try:
            locations = await run_in_threadpool(reconciliation.list_locations)
        except BaseAppException as e:
            raise HTTPException(status_code=502, detail=f"{e.kind}: {e.message}")
        return {"locations": locations}

    # ------------------------------------------------------------------
    # Exception handlers
    # ------------------------------------------------------------------

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        """Custom HTTP exception handler."""
        logger.warning(f"HTTP {exc.status_code}: {exc.detail}")
        return JSONResponse(
            status_code=exc.status_code,
            content={
                "error": exc.detail,
                "status_code": exc.status_code
            }
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        """General exception handler for unexpected errors."""
        logger.error(f"Unhandled exception: {str(exc)}", exc_info=True)
        return JSONResponse(
            status_code=500,
            content={
                "error": "Internal server error",
                "message": str(exc) if not config.is_production else "An error occurred"
            }
        )

    return app


def main():
    import uvicorn
    from .utils.config import get_config

    config = get_config()
    uvicorn.run(
        "catalog_sync.webhook_server:create_app",
        factory=True,
        host="0.0.0.0",
        port=config.env.port,
        reload=not config.is_production
    )


if __name__ == "__main__":
    main()
