"""Catalog HTTP API."""
from __future__ import annotations

from fastapi import APIRouter, Depends, Header, Query
from fastapi.responses import JSONResponse

from services.catalog.schemas import CreateProductRequest, QuoteRequest, UpdateProductRequest
from services.catalog.service import CatalogService
from services.shared.auth import Authenticator
from services.shared.errors import AlreadyProcessingError, NotFoundError
from services.shared.http_idempotency import REPLAY_HEADER
from services.shared.middleware import correlation_id

WRITE_ROLES = ("admin", "catalog:write")


def build_router(service: CatalogService, auth: Authenticator) -> APIRouter:
    router = APIRouter(prefix="/api/catalog", tags=["catalog"])
    can_write = auth.require_role(*WRITE_ROLES)

    @router.post("/products", summary="Create a product", dependencies=[Depends(can_write)])
    async def create_product(
        body: CreateProductRequest,
        idempotency_key: str | None = Header(default=None, alias="Idempotency-Key"),
        request_id: str | None = Depends(correlation_id),
    ) -> JSONResponse:
        key = (idempotency_key or "").strip() or None
        result = await service.create_product(
            body, idempotency_key=key, correlation_id=request_id
        )
        if result.state == "in_progress":
            raise AlreadyProcessingError(key or "")

        replay = result.state == "replay"
        response = JSONResponse(content=result.response, status_code=200 if replay else 201)
        response.headers[REPLAY_HEADER] = "true" if replay else "false"
        return response

    @router.patch(
        "/products/{product_id}",
        summary="Update product fields",
        dependencies=[Depends(can_write)],
    )
    async def update_product(
        product_id: str,
        body: UpdateProductRequest,
        request_id: str | None = Depends(correlation_id),
    ) -> dict:
        result = await service.update_product(product_id, body, correlation_id=request_id)
        if result.status == "not_found":
            raise NotFoundError("Product not found", code="PRODUCT_NOT_FOUND")
        return {"productId": result.product_id, "updatedFields": list(result.updated_fields)}

    @router.get("/products", summary="List products")
    async def list_products(
        limit: int = Query(default=20, ge=1, le=100),
        cursor: str | None = Query(default=None),
        status: str | None = Query(default=None, pattern="^(draft|published|archived)$"),
        search: str | None = Query(default=None, alias="q"),
    ) -> dict:
        return await service.list_products(
            limit=limit, cursor=cursor, status=status, search=search
        )

    @router.get("/products/{product_id}", summary="Get a product")
    async def get_product(product_id: str) -> dict:
        product = await service.get_product(product_id)
        if product is None:
            raise NotFoundError("Product not found", code="PRODUCT_NOT_FOUND")
        return product

    @router.post("/pricing/quote", summary="Current unit prices for cart lines")
    async def quote(body: QuoteRequest) -> dict:
        return {"items": await service.quote_prices(body.items, body.currency)}

    return router
