"""Order lifecycle: placement, cancellation, reorder, rating, status changes.

Invariants:
    - Item name/price/image are snapshotted into the order at creation
    - finalAmount == totalAmount + deliveryFee - discount on every order
    - Stock is reserved with a conditional $inc (stockCount >= quantity), so
      concurrent placements cannot drive stockCount below zero
    - Placement runs as a saga: every write registers its inverse, and a
      failure after the first reservation undoes what was already written
    - Status transitions are single conditional updates; of two concurrent
      cancels (or ratings) exactly one succeeds
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import timedelta
from typing import Callable, Dict, List, Optional, Tuple

from bson.objectid import ObjectId
from pymongo import ReturnDocument
from pymongo.database import Database

from address_book import full_address
from config import Settings
from database import (
    ADDRESSES, NOTIFICATIONS, ORDERS, PRODUCTS, TRANSACTIONS, USERS,
    create_document, find_owned, next_sequence, object_id, utcnow,
)
from errors import ConflictError, NotFoundError, ValidationError
from schemas import (
    Breakdown, CustomerDetails, DeliveryAddress, Notification, Order,
    OrderItem, TrackingStep, Transaction,
)

logger = logging.getLogger(__name__)

CLOSED_STATUSES = ["delivered", "cancelled"]

STATUS_FLOW = ["pending", "confirmed", "preparing", "out_for_delivery", "delivered"]

STATUS_STEPS = {
    "pending": ("Order Placed", "Your order has been placed successfully"),
    "confirmed": ("Order Confirmed", "Your order has been confirmed by the store"),
    "preparing": ("Preparing Order", "Your order is being packed"),
    "out_for_delivery": ("Out for Delivery", "Your order is on the way"),
    "delivered": ("Delivered", "Your order has been delivered"),
    "cancelled": ("Order Cancelled", "Order has been cancelled"),
}


@dataclass
class OrderTotals:
    total_amount: float
    delivery_fee: float
    discount: float
    final_amount: float


def compute_totals(items_total: float, settings: Settings, discount: float = 0) -> OrderTotals:
    """Delivery is free from the threshold upwards, otherwise a flat fee."""
    delivery_fee = 0 if items_total >= settings.free_delivery_threshold else settings.delivery_fee
    return OrderTotals(
        total_amount=items_total,
        delivery_fee=delivery_fee,
        discount=discount,
        final_amount=items_total + delivery_fee - discount,
    )


class Compensations:
    """Undo log for a multi-document write sequence."""

    def __init__(self):
        self._steps: List[Tuple[str, Callable[[], object]]] = []

    def add(self, description: str, action: Callable[[], object]) -> None:
        self._steps.append((description, action))

    def run(self) -> None:
        while self._steps:
            description, action = self._steps.pop()
            logger.warning(f"Compensating: {description}")
            try:
                action()
            except Exception:
                logger.exception(f"Compensation failed: {description}")


class OrderWorkflow:
    def __init__(self, db: Database, settings: Settings):
        self.db = db
        self.settings = settings

    # ─── placement ──────────────────────────────────────────────

    def place_order(
        self,
        user: dict,
        items: List[Dict],
        delivery_address_id: str,
        payment_method: str,
        promo_code: Optional[str] = None,
        special_instructions: Optional[str] = None,
    ) -> dict:
        """Place an order for ``items`` ({productId, quantity, variant?}) at current catalog prices."""
        address = None
        if ObjectId.is_valid(delivery_address_id):
            address = self.db[ADDRESSES].find_one(
                {"_id": ObjectId(delivery_address_id), "userId": user["_id"]}
            )
        if not address:
            raise ValidationError("Invalid delivery address")

        lines = []
        for item in items:
            product = self.db[PRODUCTS].find_one({"_id": object_id(item["productId"], "Product")})
            self._check_available(product, item["quantity"])
            lines.append(self._snapshot(product, item["quantity"], item.get("variant")))

        delivery = DeliveryAddress(
            name=address["name"],
            phone=address["phone"],
            address=full_address(address),
            landmark=address.get("landmark"),
            city=address["city"],
            state=address["state"],
            pincode=address["pincode"],
        )
        order = self._commit(
            user, lines, delivery, payment_method,
            promo_code=promo_code,
            special_instructions=special_instructions,
            placed_description="Your order has been placed successfully",
            notification_title="Order Placed Successfully!",
            notification_message="Your order {} has been placed and will be delivered soon.",
            ledger_description="Payment for order {}",
        )
        logger.info(
            f"Order {order['orderNumber']} placed",
            extra={"order_number": order["orderNumber"], "user_id": str(user["_id"])},
        )
        return order

    def reorder(self, user: dict, order_id) -> Tuple[dict, List[str]]:
        """Place a new order from a previous one; unavailable items are dropped.

        Returns the new order and the names of the items that were left out.
        """
        original = find_owned(self.db, ORDERS, order_id, user["_id"], "Order")
        if not original.get("canReorder"):
            raise ConflictError("This order cannot be reordered")

        lines, unavailable = [], []
        for item in original["items"]:
            product = self.db[PRODUCTS].find_one({"_id": item["productId"]})
            if not product or not product.get("isActive") or not product.get("inStock"):
                unavailable.append(item["name"])
                continue
            if product.get("stockCount", 0) < item["quantity"]:
                unavailable.append(f"{item['name']} (insufficient stock)")
                continue
            lines.append(self._snapshot(product, item["quantity"], item.get("variant")))

        if not lines:
            raise ValidationError(
                "No products from the original order are currently available",
                details=[{"field": "items", "message": name} for name in unavailable],
            )

        order = self._commit(
            user, lines, DeliveryAddress(**original["deliveryAddress"]),
            original["paymentMethod"],
            placed_description="Reorder placed successfully",
            notification_title="Reorder Placed Successfully!",
            notification_message="Your reorder {} has been placed and will be delivered soon.",
            ledger_description="Payment for reorder {}",
            lenient=True,
            unavailable=unavailable,
        )
        logger.info(
            f"Order {original['orderNumber']} reordered as {order['orderNumber']}",
            extra={"order_number": order["orderNumber"], "user_id": str(user["_id"])},
        )
        return order, unavailable

    @staticmethod
    def _check_available(product: Optional[dict], quantity: int) -> None:
        if not product or not product.get("isActive") or not product.get("inStock"):
            name = product["name"] if product else "Unknown"
            raise ValidationError(f"Product {name} is not available")
        if product.get("stockCount", 0) < quantity:
            raise ValidationError(
                f"Insufficient stock for {product['name']}. Available: {product.get('stockCount', 0)}"
            )

    @staticmethod
    def _snapshot(product: dict, quantity: int, variant: Optional[str]) -> OrderItem:
        images = product.get("images") or []
        return OrderItem(
            product_id=product["_id"],
            name=product["name"],
            quantity=quantity,
            price=product["price"],
            image=images[0] if images else None,
            unit=product.get("unit"),
            variant=variant or "",
        )

    def _reserve(self, line: OrderItem) -> bool:
        reserved = self.db[PRODUCTS].find_one_and_update(
            {
                "_id": line.product_id,
                "isActive": True,
                "inStock": True,
                "stockCount": {"$gte": line.quantity},
            },
            {"$inc": {"stockCount": -line.quantity, "totalSold": line.quantity}},
        )
        return reserved is not None

    def _release(self, product_id: ObjectId, quantity: int) -> None:
        self.db[PRODUCTS].update_one(
            {"_id": product_id},
            {"$inc": {"stockCount": quantity, "totalSold": -quantity}},
        )

    def _commit(
        self,
        user: dict,
        lines: List[OrderItem],
        delivery: DeliveryAddress,
        payment_method: str,
        placed_description: str,
        notification_title: str,
        notification_message: str,
        ledger_description: str,
        promo_code: Optional[str] = None,
        special_instructions: Optional[str] = None,
        lenient: bool = False,
        unavailable: Optional[List[str]] = None,
    ) -> dict:
        db = self.db
        saga = Compensations()
        try:
            reserved = []
            for line in lines:
                if self._reserve(line):
                    saga.add(
                        f"release {line.quantity} x {line.name}",
                        lambda pid=line.product_id, qty=line.quantity: self._release(pid, qty),
                    )
                    reserved.append(line)
                elif lenient:
                    unavailable.append(f"{line.name} (insufficient stock)")
                else:
                    current = db[PRODUCTS].find_one({"_id": line.product_id}) or {}
                    raise ValidationError(
                        f"Insufficient stock for {line.name}. Available: {current.get('stockCount', 0)}"
                    )
            if not reserved:
                raise ValidationError(
                    "No products from the original order are currently available",
                    details=[{"field": "items", "message": name} for name in unavailable or []],
                )

            totals = compute_totals(sum(l.price * l.quantity for l in reserved), self.settings)
            now = utcnow()
            order_number = f"{self.settings.order_number_prefix}{next_sequence(db, 'orderNumber'):06d}"
            paid = payment_method != "cod"
            order = Order(
                user_id=user["_id"],
                order_number=order_number,
                date=now,
                items=reserved,
                total_amount=totals.total_amount,
                delivery_fee=totals.delivery_fee,
                discount=totals.discount,
                final_amount=totals.final_amount,
                delivery_address=delivery,
                estimated_delivery=now + timedelta(hours=self.settings.estimated_delivery_hours),
                payment_method=payment_method,
                payment_status="completed" if paid else "pending",
                order_tracking=[TrackingStep(
                    status="Order Placed", time=now, description=placed_description, completed=True,
                )],
                promo_code=promo_code,
                special_instructions=special_instructions,
            )
            order_id = create_document(db, ORDERS, order)
            saga.add(f"delete order {order_number}", lambda: db[ORDERS].delete_one({"_id": order_id}))

            db[USERS].update_one(
                {"_id": user["_id"]},
                {"$inc": {"totalOrders": 1, "totalSpent": totals.final_amount}},
            )
            saga.add(
                f"revert user totals for {order_number}",
                lambda: db[USERS].update_one(
                    {"_id": user["_id"]},
                    {"$inc": {"totalOrders": -1, "totalSpent": -totals.final_amount}},
                ),
            )

            ledger_id = create_document(db, TRANSACTIONS, Transaction(
                user_id=user["_id"],
                type="payment",
                order_id=order_id,
                order_number=order_number,
                amount=totals.final_amount,
                status="completed" if paid else "pending",
                payment_method=payment_method,
                description=ledger_description.format(order_number),
                timestamp=now,
                merchant_name=self.settings.merchant_name,
                transaction_id=str(uuid.uuid4()),
                customer_details=CustomerDetails(
                    name=user.get("name"), phone=user.get("phone"), email=user.get("email"),
                ),
                breakdown=Breakdown(
                    items_total=totals.total_amount,
                    delivery_fee=totals.delivery_fee,
                    discount=totals.discount,
                    final_amount=totals.final_amount,
                ),
            ))
            saga.add(
                f"delete ledger entry for {order_number}",
                lambda: db[TRANSACTIONS].delete_one({"_id": ledger_id}),
            )

            self._notify(
                user["_id"], "order", notification_title,
                notification_message.format(order_number),
                {"orderId": order_id, "orderNumber": order_number},
            )
        except Exception:
            saga.run()
            raise
        return db[ORDERS].find_one({"_id": order_id})

    # ─── transitions ────────────────────────────────────────────

    def cancel_order(self, user: dict, order_id) -> dict:
        oid = object_id(order_id, "Order")
        order = self._cancel(
            {"_id": oid, "userId": user["_id"]},
            "Order has been cancelled by user",
        )
        if order is None:
            find_owned(self.db, ORDERS, oid, user["_id"], "Order")
            raise ConflictError("This order cannot be cancelled")
        return order

    def _cancel(self, match: dict, description: str) -> Optional[dict]:
        db = self.db
        now = utcnow()
        order = db[ORDERS].find_one_and_update(
            {**match, "canCancel": True, "status": {"$nin": CLOSED_STATUSES}},
            {
                "$set": {
                    "status": "cancelled",
                    "canCancel": False,
                    "canReorder": True,
                    "canRate": False,
                    "updatedAt": now,
                },
                "$push": {"orderTracking": TrackingStep(
                    status="Order Cancelled", time=now, description=description, completed=True,
                ).model_dump(by_alias=True)},
            },
            return_document=ReturnDocument.AFTER,
        )
        if order is None:
            return None

        for item in order["items"]:
            self._release(item["productId"], item["quantity"])
        db[USERS].update_one(
            {"_id": order["userId"]},
            {"$inc": {"totalOrders": -1, "totalSpent": -order["finalAmount"]}},
        )

        ledger = db[TRANSACTIONS].find_one({"orderId": order["_id"], "userId": order["userId"]})
        if ledger:
            update = {"status": "cancelled", "updatedAt": now}
            if ledger.get("status") == "completed":
                update["refundAmount"] = ledger["amount"]
                update["refundDate"] = now
                db[ORDERS].update_one({"_id": order["_id"]}, {"$set": {"paymentStatus": "refunded"}})
                order["paymentStatus"] = "refunded"
            db[TRANSACTIONS].update_one({"_id": ledger["_id"]}, {"$set": update})

        self._notify(
            order["userId"], "order", "Order Cancelled",
            f"Your order {order['orderNumber']} has been cancelled successfully.",
            {"orderId": order["_id"], "orderNumber": order["orderNumber"]},
        )
        logger.info(
            f"Order {order['orderNumber']} cancelled",
            extra={"order_number": order["orderNumber"], "user_id": str(order["userId"])},
        )
        return order

    def rate_order(self, user: dict, order_id, rating: int, review: Optional[str] = None) -> dict:
        oid = object_id(order_id, "Order")
        order = self.db[ORDERS].find_one_and_update(
            {
                "_id": oid,
                "userId": user["_id"],
                "canRate": True,
                "status": "delivered",
                "rating": None,
            },
            {"$set": {"rating": rating, "review": review, "canRate": False, "updatedAt": utcnow()}},
            return_document=ReturnDocument.AFTER,
        )
        if order is None:
            existing = find_owned(self.db, ORDERS, oid, user["_id"], "Order")
            if existing.get("rating"):
                raise ConflictError("Order has already been rated")
            raise ConflictError("This order cannot be rated")

        self._notify(
            user["_id"], "rating", "Thank you for your rating!",
            f"You rated order {order['orderNumber']} with {rating} stars.",
            {"orderId": order["_id"], "orderNumber": order["orderNumber"], "rating": rating},
        )
        logger.info(
            f"Order {order['orderNumber']} rated {rating}",
            extra={"order_number": order["orderNumber"], "user_id": str(user["_id"])},
        )
        return order

    def update_status(self, order_id, status: str) -> dict:
        """Store-side status change. Orders only move forward; delivered and cancelled are final."""
        oid = object_id(order_id, "Order")
        if status == "cancelled":
            order = self._cancel({"_id": oid}, "Order has been cancelled by the store")
        else:
            order = self._advance(oid, status)
        if order is None:
            current = self.db[ORDERS].find_one({"_id": oid}, {"status": 1})
            if not current:
                raise NotFoundError("Order")
            raise ConflictError(f"Order status cannot change from {current['status']} to {status}")
        return order

    def _advance(self, oid: ObjectId, status: str) -> Optional[dict]:
        db = self.db
        now = utcnow()
        title, description = STATUS_STEPS[status]
        update = {"status": status, "updatedAt": now}
        if status == "out_for_delivery":
            update["canCancel"] = False
        elif status == "delivered":
            update.update({
                "actualDelivery": now,
                "canCancel": False,
                "canRate": True,
                "canReorder": True,
                "paymentStatus": "completed",
            })
        order = db[ORDERS].find_one_and_update(
            {"_id": oid, "status": {"$in": STATUS_FLOW[:STATUS_FLOW.index(status)]}},
            {
                "$set": update,
                "$push": {"orderTracking": TrackingStep(
                    status=title, time=now, description=description, completed=True,
                ).model_dump(by_alias=True)},
            },
            return_document=ReturnDocument.AFTER,
        )
        if order is None:
            return None

        if status == "delivered":
            db[TRANSACTIONS].update_one(
                {"orderId": oid, "status": "pending"},
                {"$set": {"status": "completed", "updatedAt": now}},
            )
        self._notify(
            order["userId"],
            "delivery" if status in ("out_for_delivery", "delivered") else "order",
            title,
            f"Order {order['orderNumber']}: {description.lower()}.",
            {"orderId": order["_id"], "orderNumber": order["orderNumber"], "status": status},
        )
        logger.info(
            f"Order {order['orderNumber']} moved to {status}",
            extra={"order_number": order["orderNumber"]},
        )
        return order

    def _notify(self, user_id: ObjectId, type_: str, title: str, message: str, data: dict) -> None:
        create_document(self.db, NOTIFICATIONS, Notification(
            user_id=user_id, type=type_, title=title, message=message, data=data,
        ))
