"""
Cart HTTP API.

Every mutation requires an ``Idempotency-Key`` and goes through the
IdempotentResponder: a stored response is replayed verbatim, otherwise
the mutation runs and its response is stored under every scope that
applies to the resulting cart.
"""
from __future__ import annotations

import json
from typing import Any

from fastapi import APIRouter, Depends, Header, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError as PydanticValidationError

from services.cart.models import Cart
from services.cart.schemas import AddItemRequest, ItemTarget, UpdateItemRequest
from services.cart.service import CartContext, CartService
from services.shared.auth import Authenticator, Claims
from services.shared.errors import BadRequestError, ValidationError
from services.shared.http_idempotency import (
    IdempotentResponder,
    StoredResponse,
    read_scopes,
    write_scopes,
)


def cart_headers(cart: Cart) -> dict[str, str]:
    return {
        "x-cart-id": cart.id,
        "x-cart-version": str(cart.version),
        "etag": f'"{cart.version}"',
        "cache-control": "no-store",
    }


def cart_body(cart: Cart) -> dict[str, Any]:
    body = cart.to_json()
    body["totals"] = cart.totals()
    return body


def build_router(
    service: CartService, responder: IdempotentResponder, auth: Authenticator
) -> APIRouter:
    router = APIRouter(prefix="/api/cart", tags=["cart"])

    async def cart_context(
        claims: Claims | None = Depends(auth.optional),
        cart_id: str | None = Header(default=None, alias="x-cart-id"),
        currency: str | None = Header(default=None, alias="x-cart-currency"),
    ) -> CartContext:
        currency = (currency or "").strip() or None
        if currency is not None and len(currency) != 3:
            currency = None
        return CartContext(
            cart_id=(cart_id or "").strip() or None,
            user_id=claims.user_id if claims else None,
            currency=currency,
        )

    def respond(context: CartContext, cart: Cart, status_code: int = 200):
        """Build the idempotent action result for a cart response."""
        stored = StoredResponse(status_code, cart_body(cart), cart_headers(cart))
        scopes = write_scopes(cart.user_id, cart.id, had_context=not context.is_empty)
        return stored, scopes

    @router.get("", summary="Get the current cart")
    async def get_cart(context: CartContext = Depends(cart_context)) -> JSONResponse:
        if context.is_empty:
            raise BadRequestError("Provide X-Cart-Id or Authorization")
        cart = await service.get_cart(context)
        return JSONResponse(content=cart_body(cart), headers=cart_headers(cart))

    @router.post("/items", summary="Add an item")
    async def add_item(
        body: AddItemRequest,
        context: CartContext = Depends(cart_context),
        idempotency_key: str | None = Header(default=None, alias="Idempotency-Key"),
    ) -> JSONResponse:
        async def action():
            result = await service.add_item(
                context,
                body.sku,
                body.qty,
                variant_id=body.variant_id,
                selected_options=body.selected_options,
                currency=body.currency,
            )
            return respond(context, result.cart, 201 if result.created else 200)

        return await responder.execute(
            _key(idempotency_key), read_scopes(context.user_id, context.cart_id), action
        )

    @router.patch("/items/{sku}", summary="Set or change an item's quantity")
    async def update_item(
        sku: str,
        body: UpdateItemRequest,
        context: CartContext = Depends(cart_context),
        idempotency_key: str | None = Header(default=None, alias="Idempotency-Key"),
    ) -> JSONResponse:
        async def action():
            cart = await service.update_item_quantity(
                context,
                sku,
                qty=body.qty,
                delta=body.delta,
                variant_id=body.variant_id,
                selected_options=body.selected_options,
            )
            return respond(context, cart)

        return await responder.execute(
            _key(idempotency_key), read_scopes(context.user_id, context.cart_id), action
        )

    @router.delete("/items/{sku}", summary="Remove an item")
    async def remove_item(
        sku: str,
        request: Request,
        context: CartContext = Depends(cart_context),
        idempotency_key: str | None = Header(default=None, alias="Idempotency-Key"),
    ) -> JSONResponse:
        target = await _optional_target(request)

        async def action():
            cart = await service.remove_item(
                context,
                sku,
                variant_id=target.variant_id,
                selected_options=target.selected_options,
            )
            return respond(context, cart)

        return await responder.execute(
            _key(idempotency_key), read_scopes(context.user_id, context.cart_id), action
        )

    @router.post("/merge", summary="Merge an anonymous cart into the user's cart")
    async def merge(
        context: CartContext = Depends(cart_context),
        idempotency_key: str | None = Header(default=None, alias="Idempotency-Key"),
    ) -> JSONResponse:
        if not context.user_id:
            raise BadRequestError("Authorization header is required for merge")
        if not context.cart_id:
            raise BadRequestError("X-Cart-Id header is required for merge")

        async def action():
            cart = await service.merge_carts(context.user_id, context.cart_id)
            return respond(context, cart)

        return await responder.execute(
            _key(idempotency_key), read_scopes(context.user_id, context.cart_id), action
        )

    @router.post("/checkout", summary="Check out and produce a signed snapshot")
    async def checkout(
        context: CartContext = Depends(cart_context),
        idempotency_key: str | None = Header(default=None, alias="Idempotency-Key"),
    ) -> JSONResponse:
        if context.is_empty:
            raise BadRequestError("Provide X-Cart-Id or Authorization")

        async def action():
            result = await service.checkout(context)
            body: dict[str, Any] = {"snapshot": result.snapshot}
            if result.order_id:
                body["orderId"] = result.order_id
            stored = StoredResponse(200, body, cart_headers(result.cart))
            scopes = write_scopes(result.cart.user_id, result.cart.id, had_context=True)
            return stored, scopes

        return await responder.execute(
            _key(idempotency_key), read_scopes(context.user_id, context.cart_id), action
        )

    return router


def _key(raw: str | None) -> str | None:
    return (raw or "").strip() or None


async def _optional_target(request: Request) -> ItemTarget:
    raw = await request.body()
    if not raw.strip():
        return ItemTarget()
    try:
        data = json.loads(raw)
    except ValueError as exc:
        raise BadRequestError("Invalid JSON payload") from exc
    try:
        return ItemTarget.model_validate(data)
    except PydanticValidationError as exc:
        raise ValidationError(
            "Invalid item target",
            details=[{"loc": list(err["loc"]), "msg": err["msg"]} for err in exc.errors()],
        ) from exc
