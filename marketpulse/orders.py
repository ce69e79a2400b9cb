"""Order and payment reconciliation.

Write side: cart or direct purchases become Payment documents holding a frozen
snapshot of their line items, priced from the catalog at submission time.
Read side: buyer, vendor, and admin projections join stored line items with
the live product records.  A product that has since disappeared degrades to
placeholder values in a projection, whereas pricing a new payment intent
refuses unknown products outright.
"""
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from flask import current_app, jsonify, request

from .access import current_email
from .errors import Conflict, Forbidden, InvalidInput
from .notifications import send_order_receipt
from .utils import (
    build_pagination,
    isoformat,
    normalize_email,
    pagination_args,
    parse_object_id,
    request_payload,
    safe_float,
    safe_positive_int,
    utc_now,
)

UNKNOWN_PRODUCT = "Unknown Product"
NOT_AVAILABLE = "N/A"
PAYMENT_STATUSES = ("pending", "paid")


def to_minor_units(price: float) -> int:
    return int(round(safe_float(price, 0.0) * 100))


def line_items_total(items: Iterable[Dict]) -> float:
    total_cents = sum(
        to_minor_units(item.get("price")) * (safe_positive_int(item.get("quantity"), 0))
        for item in items
    )
    return round(total_cents / 100, 2)


def normalize_requested_items(raw_items) -> List[Tuple[str, object]]:
    if not isinstance(raw_items, list) or not raw_items:
        raise InvalidInput("Include at least one item to purchase.")

    requested = []
    for entry in raw_items:
        if not isinstance(entry, dict):
            raise InvalidInput("Each item must include a productId and quantity.")
        product_id = str(entry.get("productId") or entry.get("product_id") or "").strip()
        if not product_id:
            raise InvalidInput("Each item must include a productId.")
        requested.append((product_id, entry.get("quantity", 1)))
    return requested


class OrderService:
    def __init__(
        self,
        payments,
        products,
        cart,
        gateway,
        mailer=None,
        currency: str = "usd",
        min_charge_cents: int = 50,
        verify_intents: bool = True,
    ):
        self.payments = payments
        self.products = products
        self.cart = cart
        self.gateway = gateway
        self.mailer = mailer
        self.currency = currency
        self.min_charge_cents = min_charge_cents
        self.verify_intents = verify_intents

    # --- Catalog lookups ---

    def fetch_product(self, product_id):
        try:
            object_id = parse_object_id(product_id, "product")
        except InvalidInput:
            return None
        return self.products.find_one({"_id": object_id})

    def product_resolver(self) -> Callable[[str], Optional[Dict]]:
        product_cache: Dict[str, Optional[Dict]] = {}

        def resolve(product_id: str):
            key = str(product_id or "")
            if key not in product_cache:
                product_cache[key] = self.fetch_product(key) if key else None
            return product_cache[key]

        return resolve

    def price_line_items(self, requested: List[Tuple[str, object]]):
        line_items = []
        for product_id, raw_quantity in requested:
            product_document = self.fetch_product(product_id)
            if not product_document:
                raise InvalidInput(f"Product {product_id} does not exist.")

            price_value = safe_float(product_document.get("pricePerUnit"), 0.0)
            quantity = safe_positive_int(raw_quantity, 0)
            if price_value <= 0 or quantity <= 0:
                raise InvalidInput("Price and quantity must be positive numbers.")

            line_items.append(
                {
                    "productId": str(product_document["_id"]),
                    "quantity": quantity,
                    "price": round(price_value, 2),
                    "itemName": product_document.get("itemName", "") or "",
                    "image": product_document.get("image", "") or "",
                }
            )
        return line_items, line_items_total(line_items)

    # --- Write path ---

    def create_order_from_cart(self, email: str, buyer_name: str) -> Dict:
        cart_items = self.cart.items(email)
        if not cart_items:
            raise InvalidInput("Your cart is empty.")

        line_items = [
            {
                "productId": item.get("productId", ""),
                "quantity": safe_positive_int(item.get("quantity"), 1) or 1,
                "price": round(safe_float(item.get("pricePerUnit"), 0.0), 2),
                "itemName": item.get("itemName", "") or "",
                "image": item.get("image", "") or "",
            }
            for item in cart_items
        ]
        payment_document = {
            "buyerEmail": normalize_email(email),
            "buyerName": buyer_name,
            "items": line_items,
            "totalAmount": line_items_total(line_items),
            "currency": self.currency,
            "status": "pending",
            "createdAt": utc_now(),
        }
        self.payments.insert(payment_document)
        self.cart.clear(email)
        return payment_document

    def create_intent(self, email: str, buyer_name: str, requested) -> Dict[str, object]:
        line_items, total_value = self.price_line_items(requested)
        amount = sum(
            to_minor_units(item["price"]) * item["quantity"] for item in line_items
        )
        if amount < self.min_charge_cents:
            raise InvalidInput(
                f"The order total must be at least {self.min_charge_cents / 100:.2f} "
                f"{self.currency.upper()}."
            )

        intent = self.gateway.create_intent(
            amount,
            self.currency,
            metadata={"buyerEmail": normalize_email(email), "itemCount": len(line_items)},
        )
        intent_id = intent.get("id")

        self.payments.insert(
            {
                "buyerEmail": normalize_email(email),
                "buyerName": buyer_name,
                "items": line_items,
                "totalAmount": total_value,
                "currency": self.currency,
                "status": "pending",
                "paymentIntentId": intent_id,
                "createdAt": utc_now(),
            }
        )
        current_app.logger.info(
            "Created payment intent %s for %s (%s minor units)", intent_id, email, amount
        )
        return {
            "clientSecret": intent.get("client_secret"),
            "paymentIntentId": intent_id,
            "amount": amount,
            "currency": self.currency,
        }

    def confirm_with_provider(self, intent_id: str, total_value: float):
        intent = self.gateway.retrieve_intent(intent_id)
        if intent.get("status") != "succeeded":
            raise InvalidInput("The payment has not been completed.")
        if safe_positive_int(intent.get("amount"), 0) != to_minor_units(total_value):
            raise InvalidInput("The payment amount does not match the order total.")

    def save_payment(
        self, email: str, buyer_name: str, intent_id: str, raw_items=None
    ) -> Tuple[Dict, bool]:
        intent_id = str(intent_id or "").strip()
        if not intent_id:
            raise InvalidInput("paymentIntentId is required.")
        normalized_email = normalize_email(email)

        existing = self.payments.find_one({"paymentIntentId": intent_id})
        if existing and normalize_email(existing.get("buyerEmail")) != normalized_email:
            raise Forbidden("This payment belongs to another buyer.")
        if existing and existing.get("status") == "paid":
            raise Conflict("This payment has already been recorded.")

        if existing:
            line_items = existing.get("items") or []
            total_value = safe_float(existing.get("totalAmount"), line_items_total(line_items))
        else:
            line_items, total_value = self.price_line_items(
                normalize_requested_items(raw_items)
            )

        if self.verify_intents:
            self.confirm_with_provider(intent_id, total_value)

        paid_at = utc_now()
        if existing:
            payment_document = self.payments.update_if(
                {"_id": existing["_id"]},
                {"status": "pending"},
                {"$set": {"status": "paid", "paidAt": paid_at, "buyerName": buyer_name}},
            )
            if payment_document is None:
                raise Conflict("This payment has already been recorded.")
        else:
            payment_document = {
                "buyerEmail": normalized_email,
                "buyerName": buyer_name,
                "items": line_items,
                "totalAmount": total_value,
                "currency": self.currency,
                "status": "paid",
                "paymentIntentId": intent_id,
                "paidAt": paid_at,
                "createdAt": paid_at,
            }
            self.payments.insert(payment_document)

        self.cart.remove_products(
            normalized_email, (item.get("productId") for item in line_items)
        )
        current_app.logger.info("Recorded payment %s for %s", intent_id, normalized_email)

        email_sent = False
        if self.mailer is not None:
            email_sent, _ = send_order_receipt(self.mailer, payment_document)
        return payment_document, email_sent

    # --- Read path ---

    def flatten_line_items(self, payment_documents, resolve) -> List[Dict[str, object]]:
        records = []
        for payment_document in payment_documents:
            for item in payment_document.get("items") or []:
                if not isinstance(item, dict):
                    continue
                product_document = resolve(item.get("productId")) or {}
                quantity = safe_positive_int(item.get("quantity"), 1) or 1
                price_value = round(safe_float(item.get("price"), 0.0), 2)
                records.append(
                    {
                        "orderId": str(payment_document.get("_id")),
                        "paymentIntentId": payment_document.get("paymentIntentId") or "",
                        "buyerEmail": payment_document.get("buyerEmail", "") or "",
                        "buyerName": payment_document.get("buyerName", "") or "",
                        "productId": item.get("productId", "") or "",
                        "itemName": product_document.get("itemName") or UNKNOWN_PRODUCT,
                        "image": product_document.get("image") or item.get("image") or "",
                        "vendorEmail": product_document.get("vendorEmail") or NOT_AVAILABLE,
                        "vendorName": product_document.get("vendorName") or NOT_AVAILABLE,
                        "marketName": product_document.get("marketName") or NOT_AVAILABLE,
                        "quantity": quantity,
                        "price": price_value,
                        "lineTotal": round(price_value * quantity, 2),
                        "status": payment_document.get("status", "paid"),
                        "paidAt": isoformat(payment_document.get("paidAt")),
                    }
                )
        return records

    def admin_orders(self, page: int, limit: int):
        query = {"status": "paid"}
        total = self.payments.count(query)
        payment_documents = self.payments.find(
            query,
            sort=[("paidAt", -1), ("_id", -1)],
            skip=(page - 1) * limit,
            limit=limit,
        )
        return self.flatten_line_items(payment_documents, self.product_resolver()), total

    def vendor_orders(self, email: str, page: int, limit: int):
        normalized_email = normalize_email(email)
        product_ids = [
            str(document["_id"])
            for document in self.products.find(
                {"vendorEmail": normalized_email}, projection={"_id": 1}
            )
        ]
        if not product_ids:
            return [], 0

        payment_documents = self.payments.find(
            {"status": "paid", "items.productId": {"$in": product_ids}},
            sort=[("paidAt", -1), ("_id", -1)],
        )
        records = [
            record
            for record in self.flatten_line_items(payment_documents, self.product_resolver())
            if normalize_email(record["vendorEmail"]) == normalized_email
        ]
        start = (page - 1) * limit
        return records[start:start + limit], len(records)

    def summarize_buyer_order(self, payment_document, resolve) -> Dict[str, object]:
        stored_items = [
            item for item in payment_document.get("items") or [] if isinstance(item, dict)
        ]
        summary = {
            "id": str(payment_document.get("_id")),
            "paymentIntentId": payment_document.get("paymentIntentId") or "",
            "status": payment_document.get("status", "pending"),
            "createdAt": isoformat(payment_document.get("createdAt")),
            "paidAt": isoformat(payment_document.get("paidAt")),
            "items": [],
            "itemCount": 0,
            "totalAmount": round(
                safe_float(payment_document.get("totalAmount"), line_items_total(stored_items)), 2
            ),
        }

        # Unresolved products keep their charged line with placeholder details.
        for item in stored_items:
            product_document = resolve(item.get("productId")) or {}
            quantity = safe_positive_int(item.get("quantity"), 1) or 1
            price_value = round(safe_float(item.get("price"), 0.0), 2)
            summary["items"].append(
                {
                    "productId": item.get("productId", ""),
                    "itemName": product_document.get("itemName")
                    or item.get("itemName")
                    or UNKNOWN_PRODUCT,
                    "image": product_document.get("image") or item.get("image") or "",
                    "marketName": product_document.get("marketName") or NOT_AVAILABLE,
                    "vendorName": product_document.get("vendorName") or NOT_AVAILABLE,
                    "available": bool(product_document),
                    "quantity": quantity,
                    "price": price_value,
                    "lineTotal": round(price_value * quantity, 2),
                }
            )

        summary["itemCount"] = sum(item["quantity"] for item in summary["items"])
        return summary

    def buyer_orders(self, email: str, status: str, page: int, limit: int):
        # Intents that never reached save-payment are not orders yet.
        query: Dict[str, object] = {
            "buyerEmail": normalize_email(email),
            "$or": [{"status": "paid"}, {"paymentIntentId": {"$exists": False}}],
        }
        if status:
            query["status"] = status
        total = self.payments.count(query)
        payment_documents = self.payments.find(
            query,
            sort=[("createdAt", -1), ("_id", -1)],
            skip=(page - 1) * limit,
            limit=limit,
        )
        resolve = self.product_resolver()
        return [self.summarize_buyer_order(document, resolve) for document in payment_documents], total


def serialize_payment(payment_document) -> Dict[str, object]:
    return {
        "id": str(payment_document.get("_id")),
        "buyerEmail": payment_document.get("buyerEmail", ""),
        "buyerName": payment_document.get("buyerName", ""),
        "items": payment_document.get("items") or [],
        "totalAmount": round(safe_float(payment_document.get("totalAmount"), 0.0), 2),
        "currency": payment_document.get("currency", "usd"),
        "status": payment_document.get("status", "pending"),
        "paymentIntentId": payment_document.get("paymentIntentId") or "",
        "createdAt": isoformat(payment_document.get("createdAt")),
        "paidAt": isoformat(payment_document.get("paidAt")),
    }


def register_routes(app, access, orders: OrderService, directory):
    page_size = app.config["ORDERS_PAGE_SIZE"]

    def buyer_name(payload: Dict) -> str:
        return directory.display_name(current_email()) or str(
            payload.get("buyerName") or ""
        ).strip()

    @app.route("/create-order", methods=["POST"])
    @access.verify_token
    @access.verify_role("user")
    def create_order():
        payload = request_payload()
        payment_document = orders.create_order_from_cart(current_email(), buyer_name(payload))
        return (
            jsonify({"message": "Order placed.", "order": serialize_payment(payment_document)}),
            201,
        )

    @app.route("/create-payment-intent", methods=["POST"])
    @access.verify_token
    @access.verify_role("user")
    def create_payment_intent():
        payload = request_payload()
        product_id = str(payload.get("productId") or "").strip()
        if not product_id:
            raise InvalidInput("productId is required.")
        intent = orders.create_intent(
            current_email(),
            buyer_name(payload),
            [(product_id, payload.get("quantity", 1))],
        )
        return jsonify(intent)

    @app.route("/create-payment-intent-cart", methods=["POST"])
    @access.verify_token
    @access.verify_role("user")
    def create_payment_intent_cart():
        payload = request_payload()
        if payload.get("items"):
            requested = normalize_requested_items(payload.get("items"))
        else:
            cart_items = orders.cart.items(current_email())
            if not cart_items:
                raise InvalidInput("Your cart is empty.")
            requested = [(item.get("productId"), item.get("quantity")) for item in cart_items]

        intent = orders.create_intent(current_email(), buyer_name(payload), requested)
        return jsonify(intent)

    @app.route("/save-payment", methods=["POST"])
    @access.verify_token
    @access.verify_role("user")
    def save_payment():
        payload = request_payload()
        payment_document, email_sent = orders.save_payment(
            current_email(),
            buyer_name(payload),
            payload.get("paymentIntentId") or payload.get("transactionId"),
            payload.get("items"),
        )
        return (
            jsonify(
                {
                    "message": "Payment recorded.",
                    "payment": serialize_payment(payment_document),
                    "emailSent": email_sent,
                }
            ),
            201,
        )

    @app.route("/orders", methods=["GET"])
    @access.verify_token
    @access.verify_email_param
    @access.verify_role("user")
    def buyer_orders():
        status = (request.args.get("status") or "").strip().lower()
        if status and status not in PAYMENT_STATUSES:
            raise InvalidInput("Unknown order status filter.")
        page, limit = pagination_args(page_size)
        records, total = orders.buyer_orders(current_email(), status, page, limit)
        return jsonify({"orders": records, "pagination": build_pagination(page, limit, total)})

    @app.route("/admin/orders", methods=["GET"])
    @access.verify_token
    @access.verify_role("admin")
    def admin_orders():
        page, limit = pagination_args(page_size)
        records, total = orders.admin_orders(page, limit)
        return jsonify({"orders": records, "pagination": build_pagination(page, limit, total)})

    @app.route("/vendor/orders", methods=["GET"])
    @access.verify_token
    @access.verify_role("vendor")
    def vendor_orders():
        page, limit = pagination_args(page_size)
        records, total = orders.vendor_orders(current_email(), page, limit)
        return jsonify({"orders": records, "pagination": build_pagination(page, limit, total)})
