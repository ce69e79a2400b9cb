from typing import Dict, Optional

from flask import Flask, jsonify
from flask_cors import CORS
from flask_jwt_extended import JWTManager
from flask_pymongo import PyMongo
from pymongo.errors import PyMongoError
from werkzeug.exceptions import HTTPException

from . import advertisements, cart, comments, notifications, orders, products, users, vendors, wishlist
from .access import AccessControl
from .config import Config
from .errors import ApiError, InternalError
from .payments import StripeGateway
from .store import MongoStore
from .tokens import TokenService


def build_allowed_origins(app: Flask):
    allowed_origins = [app.config.get("FRONTEND_URL", "")]
    cors_extra = app.config.get("CORS_ALLOWED_ORIGINS", "")
    if cors_extra:
        for origin in cors_extra.split(","):
            trimmed = origin.strip()
            if trimmed:
                allowed_origins.append(trimmed)
    return [origin for origin in allowed_origins if origin]


def create_app(
    config_overrides: Optional[Dict] = None,
    store=None,
    payment_gateway=None,
    mailer=None,
) -> Flask:
    """Create and configure the Flask application."""
    app = Flask(__name__)

    # --- Configuration ---
    app.config.from_object(Config)
    if config_overrides:
        app.config.update(config_overrides)

    # --- Initialize extensions ---
    CORS(app, supports_credentials=True, origins=build_allowed_origins(app) or "*")
    JWTManager(app)

    if store is None:
        store = MongoStore(PyMongo(app).db)
        store.ensure_indexes()

    if payment_gateway is None:
        payment_gateway = StripeGateway(
            app.config["STRIPE_SECRET_KEY"], app.config["STRIPE_API_BASE"]
        )
    if mailer is None:
        mailer = notifications.ResendMailer(
            app.config["RESEND_API_KEY"], app.config["MAIL_SENDER"]
        )

    # --- Components ---
    tokens = TokenService()
    access = AccessControl(store.users, tokens)
    directory = users.UserDirectory(store.users, app.config.get("DEFAULT_ADMIN_EMAIL", ""))
    applications = vendors.VendorApplications(store.vendor_requests, directory)
    product_listings = products.build_products_resource(store.products)
    ad_listings = advertisements.build_ads_resource(store.advertisements)
    buyer_wishlist = wishlist.Wishlist(store.wishlist, store.products)
    buyer_cart = cart.Cart(store.cart, store.products)
    order_service = orders.OrderService(
        store.payments,
        store.products,
        buyer_cart,
        payment_gateway,
        mailer=mailer,
        currency=app.config["PAYMENT_CURRENCY"],
        min_charge_cents=app.config["MIN_CHARGE_CENTS"],
        verify_intents=app.config["VERIFY_PAYMENT_INTENTS"],
    )

    app.extensions["marketpulse"] = {
        "store": store,
        "access": access,
        "directory": directory,
        "orders": order_service,
    }

    # --- Error handlers ---
    @app.errorhandler(ApiError)
    def handle_api_error(error: ApiError):
        return jsonify(error.to_dict()), error.status_code

    @app.errorhandler(PyMongoError)
    def handle_store_error(error: PyMongoError):
        app.logger.error("Document store failure: %s", error)
        internal = InternalError()
        return jsonify(internal.to_dict()), internal.status_code

    @app.errorhandler(HTTPException)
    def handle_http_error(error: HTTPException):
        return jsonify({"message": error.description}), error.code

    @app.errorhandler(Exception)
    def handle_unexpected_error(error: Exception):
        app.logger.exception("Unhandled error: %s", error)
        internal = InternalError()
        return jsonify(internal.to_dict()), internal.status_code

    # --- ROUTES ---
    @app.route("/")
    def index():
        return "Server is running"

    @app.route("/health")
    def health():
        return {"status": "ok"}, 200

    users.register_routes(app, access, directory, tokens)
    vendors.register_routes(app, access, applications)
    products.register_routes(app, access, product_listings, directory)
    advertisements.register_routes(app, access, ad_listings, directory)
    wishlist.register_routes(app, access, buyer_wishlist)
    cart.register_routes(app, access, buyer_cart)
    orders.register_routes(app, access, order_service, directory)
    comments.register_routes(app, access, store, directory)
    notifications.register_routes(app, mailer)

    return app
