from __future__ import annotations
import asyncio
import logging
import secrets
import time
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any, Optional

from .cart import Cart
from .config import Settings
from .database import CollectionGateway
from .errors import NotificationFailure, RemoteError, ValidationError
from .notify import Notifier
from .schemas import BillingDetails, Order

logger = logging.getLogger(__name__)

ORDERS = "orders"
OUTBOX = "outbox"


def generate_order_id() -> str:
    return f"ORD-{int(time.time() * 1000)}-{secrets.token_hex(3).upper()}"


def order_details(order: Order) -> str:
    return ", ".join(f"{item.name} ({item.quantity})" for item in order.items)


class CheckoutService:
    """Turns a cart into a persisted order and a confirmation email.

    The order is written before the email goes out. If the email fails the
    order stays, is marked ``notification_status="failed"`` and its message is
    parked in the outbox for ``retry_outbox``. The cart is only cleared once
    both steps succeeded.
    """

    def __init__(self, gateway: CollectionGateway, notifier: Notifier, settings: Settings):
        self.gateway = gateway
        self.notifier = notifier
        self.shop_name = settings.SHOP_NAME
        self.shop_email = settings.SHOP_EMAIL
        self.redirect_to = settings.CHECKOUT_REDIRECT
        self.display_delay = settings.CHECKOUT_DISPLAY_DELAY

    def build_order(self, cart: Cart, details: BillingDetails) -> Order:
        card_last4 = details.card_number[-4:] if details.card_number else None
        return Order(
            id=generate_order_id(),
            full_name=details.full_name,
            email=details.email,
            address=details.address,
            city=details.city,
            postal_code=details.postal_code,
            country=details.country,
            payment_method=details.payment_method,
            card_last4=card_last4,
            shipping_method=details.shipping_method,
            items=cart.snapshot(),
            total=cart.calculate_total(),
            created_at=datetime.now(timezone.utc),
        )

    def template_params(self, order: Order) -> dict[str, Any]:
        return {
            "to_name": order.full_name,
            "to_email": order.email,
            "to_shop": self.shop_email,
            "from_name": self.shop_name,
            "order_id": order.id,
            "order_details": order_details(order),
            "total_amount": order.total,
            "shipping_address": f"{order.address}, {order.city}, {order.postal_code}, {order.country}",
        }

    async def checkout(
        self,
        cart: Cart,
        details: BillingDetails,
        navigate: Optional[Callable[[str], Any]] = None,
    ) -> Order:
        if not len(cart):
            raise ValidationError({"cart": "Cart is empty"})

        order = self.build_order(cart, details)
        await self.gateway.set(ORDERS, order.id, order.model_dump(exclude={"id"}))
        logger.info(f"Order {order.id} saved, total {order.total:.2f}")

        params = self.template_params(order)
        try:
            await self.notifier.send(params)
        except NotificationFailure as e:
            logger.error(f"Confirmation for order {order.id} not sent: {e}")
            try:
                await self._park(order.id, params, str(e))
            except RemoteError as park_error:
                logger.error(f"Could not park confirmation for order {order.id}: {park_error}")
            raise NotificationFailure(str(e), order_id=order.id) from e

        order.notification_status = "sent"
        try:
            await self.gateway.update(ORDERS, order.id, {"notification_status": "sent"})
        except RemoteError as e:
            logger.warning(f"Order {order.id} confirmed but status not recorded: {e}")
        cart.clear_cart()

        if navigate is not None:
            await asyncio.sleep(self.display_delay)
            navigate(self.redirect_to)
        return order

    async def _park(self, order_id: str, params: dict[str, Any], error: str) -> None:
        await self.gateway.update(ORDERS, order_id, {"notification_status": "failed"})
        await self.gateway.set(OUTBOX, order_id, {
            "order_id": order_id,
            "template_params": params,
            "attempts": 1,
            "status": "pending",
            "last_error": error,
        })

    async def retry_outbox(self) -> int:
        """Resend parked confirmations. Returns how many went out."""
        sent = 0
        for entry in await self.gateway.list(OUTBOX, {"status": "pending"}):
            try:
                await self.notifier.send(entry["template_params"])
            except NotificationFailure as e:
                logger.warning(f"Retry for order {entry['order_id']} failed: {e}")
                try:
                    await self.gateway.update(OUTBOX, entry["id"], {
                        "attempts": entry.get("attempts", 0) + 1,
                        "last_error": str(e),
                    })
                except RemoteError as update_error:
                    logger.error(f"Could not record retry for order {entry['order_id']}: {update_error}")
                continue
            sent += 1
            try:
                await self.gateway.update(OUTBOX, entry["id"], {"status": "sent"})
                await self.gateway.update(ORDERS, entry["order_id"], {"notification_status": "sent"})
            except RemoteError as e:
                logger.error(f"Order {entry['order_id']} confirmed but status not recorded: {e}")
        logger.info(f"Outbox retry sent {sent} confirmation(s)")
        return sent
