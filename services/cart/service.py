"""
Cart operations and the signed checkout snapshot.

A cart is resolved from the caller's context: the user's cart when a
user is known, else the cart named by ``X-Cart-Id``. Checkout prices the
lines through the pricing provider, signs the snapshot with HMAC-SHA256
over its canonical JSON, optionally forwards it to orders and then
empties the cart.
"""
from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import Any

import structlog

from services.cart.clients import OrdersClient, PricingProvider
from services.cart.errors import (
    CartCheckoutError,
    CartItemNotFoundError,
    CartNotFoundError,
    CartValidationError,
)
from services.cart.models import (
    Cart,
    CartItem,
    PricingSnapshot,
    item_key,
    normalize_optional,
    normalize_options,
    normalize_sku,
)
from services.cart.store import CartStore
from services.shared.database import to_iso, utcnow
from services.shared.errors import DownstreamError
from services.shared.signing import sign_document

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class CartContext:
    cart_id: str | None = None
    user_id: str | None = None
    currency: str | None = None

    @property
    def is_empty(self) -> bool:
        return not self.cart_id and not self.user_id


@dataclass(frozen=True)
class AddItemResult:
    cart: Cart
    created: bool


@dataclass(frozen=True)
class CheckoutResult:
    snapshot: dict[str, Any]
    cart: Cart
    order_id: str | None = None


class CartService:
    def __init__(
        self,
        store: CartStore,
        *,
        default_currency: str,
        max_qty_per_item: int,
        snapshot_secret: str,
        pricing: PricingProvider | None = None,
        orders: OrdersClient | None = None,
    ) -> None:
        self._store = store
        self._default_currency = default_currency.upper()
        self._max_qty = max_qty_per_item
        self._snapshot_secret = snapshot_secret
        self._pricing = pricing
        self._orders = orders

    @property
    def max_qty_per_item(self) -> int:
        return self._max_qty

    async def get_cart(self, context: CartContext) -> Cart:
        cart, _ = await self._resolve(context, create_for_user=bool(context.user_id))
        return cart

    async def add_item(
        self,
        context: CartContext,
        sku: str,
        qty: int,
        *,
        variant_id: str | None = None,
        selected_options: dict[str, str] | None = None,
        currency: str | None = None,
    ) -> AddItemResult:
        cart, created = await self._resolve(
            context,
            create_for_user=True,
            allow_anonymous=not context.cart_id,
            currency=currency,
        )
        if qty > self._max_qty:
            raise CartValidationError(f"Quantity cannot exceed {self._max_qty}")
        new_item = CartItem(
            sku=normalize_sku(sku),
            qty=qty,
            variant_id=normalize_optional(variant_id),
            selected_options=normalize_options(selected_options),
        )
        new_key = _key(new_item)

        def mutate(current: Cart | None) -> Cart:
            base = current or cart
            items = list(base.items)
            for index, item in enumerate(items):
                if _key(item) == new_key:
                    next_qty = item.qty + new_item.qty
                    if next_qty > self._max_qty:
                        raise CartValidationError(f"Quantity cannot exceed {self._max_qty}")
                    items[index] = item.model_copy(update={"qty": next_qty})
                    break
            else:
                items.append(new_item)
            return base.model_copy(
                update={
                    "items": items,
                    "user_id": base.user_id or context.user_id,
                    "status": "active",
                    "pricing_snapshot": None,
                }
            )

        updated = await self._store.update_cart(cart.id, mutate)
        if updated is None:
            raise CartNotFoundError()
        logger.info("cart_item_added", cart_id=updated.id, sku=new_item.sku, qty=qty)
        return AddItemResult(updated, created and not cart.items)

    async def update_item_quantity(
        self,
        context: CartContext,
        sku: str,
        *,
        qty: int | None = None,
        delta: int | None = None,
        variant_id: str | None = None,
        selected_options: dict[str, str] | None = None,
    ) -> Cart:
        if qty is None and delta is None:
            raise CartValidationError("qty or delta is required")
        cart, _ = await self._resolve(context)
        target = item_key(
            normalize_sku(sku), normalize_optional(variant_id), normalize_options(selected_options)
        )

        def mutate(current: Cart | None) -> Cart:
            if current is None:
                raise CartNotFoundError()
            items = list(current.items)
            index = _find(items, target)
            existing = items[index]
            next_qty = existing.qty + delta if delta is not None else qty
            if next_qty < 0:
                raise CartValidationError("Quantity cannot be negative")
            if next_qty == 0:
                del items[index]
            elif next_qty > self._max_qty:
                raise CartValidationError(f"Quantity cannot exceed {self._max_qty}")
            else:
                items[index] = existing.model_copy(update={"qty": next_qty})
            return current.model_copy(
                update={"items": items, "status": "active", "pricing_snapshot": None}
            )

        updated = await self._store.update_cart(cart.id, mutate)
        if updated is None:
            raise CartNotFoundError()
        return updated

    async def remove_item(
        self,
        context: CartContext,
        sku: str,
        *,
        variant_id: str | None = None,
        selected_options: dict[str, str] | None = None,
    ) -> Cart:
        cart, _ = await self._resolve(context)
        target = item_key(
            normalize_sku(sku), normalize_optional(variant_id), normalize_options(selected_options)
        )

        def mutate(current: Cart | None) -> Cart:
            if current is None:
                raise CartNotFoundError()
            index = _find(current.items, target)
            items = [item for i, item in enumerate(current.items) if i != index]
            return current.model_copy(
                update={
                    "items": items,
                    "status": current.status if items else "active",
                    "pricing_snapshot": None,
                }
            )

        updated = await self._store.update_cart(cart.id, mutate)
        if updated is None:
            raise CartNotFoundError()
        return updated

    async def merge_carts(self, user_id: str, anonymous_cart_id: str) -> Cart:
        """Fold an anonymous cart into the user's cart, capping each line."""
        anonymous = await self._store.get_cart(anonymous_cart_id)
        cart, _ = await self._resolve(CartContext(user_id=user_id), create_for_user=True)
        if anonymous is None or not anonymous.items or anonymous.id == cart.id:
            return cart

        def mutate(current: Cart | None) -> Cart:
            base = current or cart
            merged = list(base.items)
            for incoming in anonymous.items:
                key = _key(incoming)
                for index, item in enumerate(merged):
                    if _key(item) == key:
                        merged[index] = item.model_copy(
                            update={"qty": min(self._max_qty, item.qty + incoming.qty)}
                        )
                        break
                else:
                    merged.append(incoming)
            return base.model_copy(
                update={
                    "items": merged,
                    "user_id": user_id,
                    "status": "active",
                    "pricing_snapshot": None,
                }
            )

        updated = await self._store.update_cart(cart.id, mutate)
        if updated is None:
            raise CartNotFoundError()
        await self._store.delete_cart(anonymous_cart_id)
        logger.info("carts_merged", cart_id=updated.id, merged_from=anonymous_cart_id)
        return updated

    async def checkout(self, context: CartContext) -> CheckoutResult:
        cart, _ = await self._resolve(context)
        if not cart.items:
            raise CartCheckoutError("Cart is empty")

        priced_items, pricing = await self._price(cart)
        snapshot = self._build_snapshot(cart, priced_items, pricing)

        order_id: str | None = None
        if self._orders is not None:
            try:
                order_id = await self._orders.place_order(snapshot)
            except DownstreamError as exc:
                logger.warning(
                    "checkout_order_forward_failed",
                    cart_id=cart.id,
                    snapshot_id=snapshot["snapshotId"],
                    error=exc.message,
                )

        def mutate(current: Cart | None) -> Cart:
            if current is None:
                raise CartNotFoundError()
            return current.model_copy(
                update={"items": [], "pricing_snapshot": pricing, "status": "checked_out"}
            )

        cleared = await self._store.update_cart(cart.id, mutate)
        if cleared is None:
            raise CartCheckoutError("Failed to finalize cart")
        logger.info(
            "cart_checked_out",
            cart_id=cart.id,
            snapshot_id=snapshot["snapshotId"],
            order_id=order_id,
        )
        return CheckoutResult(snapshot, cleared, order_id)

    async def _price(self, cart: Cart) -> tuple[list[dict[str, Any]], PricingSnapshot | None]:
        lines = [item.to_json() for item in cart.items]
        if self._pricing is None:
            return lines, None

        try:
            quotes = await self._pricing.quote(cart.items, cart.currency)
        except DownstreamError as exc:
            logger.error("checkout_pricing_failed", cart_id=cart.id, error=exc.message)
            raise CartCheckoutError("Failed to refresh pricing") from exc

        by_key: dict[str, dict[str, Any]] = {}
        by_sku: dict[str, dict[str, Any]] = {}
        for quote in quotes:
            sku = normalize_sku(str(quote.get("sku", "")))
            by_key[
                item_key(
                    sku,
                    normalize_optional(quote.get("variantId")),
                    normalize_options(quote.get("selectedOptions")),
                )
            ] = quote
            by_sku.setdefault(sku, quote)

        currency: str | None = None
        subtotal = 0
        priced: list[dict[str, Any]] = []
        for item, line in zip(cart.items, lines):
            quote = by_key.get(_key(item)) or by_sku.get(item.sku)
            if quote is None:
                raise CartCheckoutError(f"Missing pricing for SKU {item.sku}")
            quote_currency = str(quote["currency"]).upper()
            if currency and quote_currency != currency:
                raise CartCheckoutError("Pricing currency mismatch detected")
            currency = currency or quote_currency
            unit_price = int(quote["unitPriceCents"])
            priced.append(
                {
                    **line,
                    "unitPriceCents": unit_price,
                    "currency": quote_currency,
                    "title": quote.get("title"),
                }
            )
            subtotal += unit_price * item.qty

        totals = cart.totals()
        return priced, PricingSnapshot(
            subtotal_cents=subtotal,
            currency=currency or cart.currency,
            item_count=totals["itemCount"],
            total_quantity=totals["totalQuantity"],
            computed_at=to_iso(utcnow()),
        )

    def _build_snapshot(
        self,
        cart: Cart,
        items: list[dict[str, Any]],
        pricing: PricingSnapshot | None,
    ) -> dict[str, Any]:
        totals = cart.totals()
        snapshot: dict[str, Any] = {
            "snapshotId": str(uuid.uuid4()),
            "cartId": cart.id,
            "cartVersion": cart.version,
            "currency": cart.currency,
            "items": items,
            "totals": {
                **totals,
                "subtotalCents": pricing.subtotal_cents if pricing else None,
                "currency": pricing.currency if pricing else cart.currency,
            },
            "createdAt": to_iso(utcnow()),
            "userId": cart.user_id,
            "pricingSnapshot": pricing.to_json() if pricing else None,
        }
        snapshot["signature"] = sign_document(snapshot, self._snapshot_secret)
        return snapshot

    async def _resolve(
        self,
        context: CartContext,
        *,
        create_for_user: bool = False,
        allow_anonymous: bool = False,
        currency: str | None = None,
    ) -> tuple[Cart, bool]:
        """Returns the cart and whether it was created by this call."""
        currency = (currency or context.currency or self._default_currency).upper()

        if context.user_id:
            existing_id = await self._store.get_cart_id_by_user(context.user_id)
            if existing_id:
                existing = await self._store.get_cart(existing_id)
                if existing is not None:
                    return existing, False
                await self._store.clear_user_cart(context.user_id)
            if not create_for_user:
                raise CartNotFoundError()
            return await self._store.create_cart(currency=currency, user_id=context.user_id), True

        if context.cart_id:
            cart = await self._store.get_cart(context.cart_id)
            if cart is None:
                raise CartNotFoundError()
            return cart, False

        if allow_anonymous:
            return await self._store.create_cart(currency=currency), True
        raise CartNotFoundError()


def _key(item: CartItem) -> str:
    return item_key(item.sku, item.variant_id, item.selected_options)


def _find(items: list[CartItem], target: str) -> int:
    for index, item in enumerate(items):
        if _key(item) == target:
            return index
    raise CartItemNotFoundError()
