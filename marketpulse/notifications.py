import html
import logging
from typing import Dict, List, Optional, Tuple

import resend
from flask import current_app, jsonify

from .errors import ExternalServiceError, InvalidInput
from .utils import is_valid_email, normalize_email, request_payload, safe_float, safe_positive_int

logger = logging.getLogger(__name__)


class ResendMailer:
    """Sends mail through resend; the key is set once on the module at construction."""

    def __init__(self, api_key: str, sender: str):
        self.api_key = (api_key or "").strip()
        self.sender = sender
        if self.api_key:
            resend.api_key = self.api_key

    def send(
        self, recipients: List[str], subject: str, html_body: str, text_body: str,
        reply_to: Optional[str] = None,
    ) -> Tuple[bool, Optional[str]]:
        if not self.api_key:
            return False, "Resend API key is not configured."

        payload: Dict[str, object] = {
            "from": self.sender,
            "to": recipients,
            "subject": subject,
            "html": html_body,
            "text": text_body,
        }
        if reply_to:
            payload["reply_to"] = reply_to

        try:
            response = resend.Emails.send(payload)
        except Exception as exc:
            return False, str(exc)

        if not isinstance(response, dict) or not response.get("id"):
            return False, str(response)

        return True, None


def build_receipt(payment_document: Dict) -> Tuple[str, str]:
    rows = []
    lines = []
    total_value = 0.0
    for item in payment_document.get("items") or []:
        name = str(item.get("itemName") or "").strip() or "Item"
        quantity = safe_positive_int(item.get("quantity"), 1) or 1
        price_value = round(safe_float(item.get("price"), 0.0), 2)
        line_total = round(price_value * quantity, 2)
        total_value += line_total
        rows.append(
            f"<tr><td>{html.escape(name)}</td><td>{quantity}</td>"
            f"<td>{price_value:.2f}</td><td>{line_total:.2f}</td></tr>"
        )
        lines.append(f"{name} x{quantity} - {line_total:.2f}")

    total_value = round(safe_float(payment_document.get("totalAmount"), total_value), 2)
    currency = str(payment_document.get("currency") or "usd").upper()
    reference = payment_document.get("paymentIntentId") or str(payment_document.get("_id"))

    html_body = (
        "<h2>Thanks for your order</h2>"
        f"<p>Payment reference: {html.escape(str(reference))}</p>"
        "<table><tr><th>Item</th><th>Qty</th><th>Price</th><th>Total</th></tr>"
        + "".join(rows)
        + "</table>"
        f"<p><strong>Total: {total_value:.2f} {currency}</strong></p>"
    )
    text_body = "\n".join(
        ["Thanks for your order.", f"Payment reference: {reference}", *lines,
         f"Total: {total_value:.2f} {currency}"]
    )
    return html_body, text_body


def send_order_receipt(mailer, payment_document: Dict) -> Tuple[bool, Optional[str]]:
    recipient = normalize_email(payment_document.get("buyerEmail"))
    if not recipient:
        return False, "Missing buyer email for the order receipt."

    html_body, text_body = build_receipt(payment_document)
    sent, error = mailer.send([recipient], "Your market order receipt", html_body, text_body)
    if not sent:
        logger.error("Order receipt delivery failed for %s: %s", recipient, error)
    return sent, error


def register_routes(app, mailer):
    @app.route("/contact", methods=["POST"])
    def contact():
        payload = request_payload()
        name = str(payload.get("name") or "").strip()
        email = normalize_email(payload.get("email"))
        message = str(payload.get("message") or "").strip()

        if not name or not message or not is_valid_email(email):
            raise InvalidInput("Name, a valid email, and a message are required.")

        recipient = current_app.config.get("CONTACT_RECIPIENT") or mailer.sender
        html_body = (
            f"<p><strong>{html.escape(name)}</strong> ({html.escape(email)}) wrote:</p>"
            f"<p>{html.escape(message)}</p>"
        )
        text_body = f"{name} ({email}) wrote:\n\n{message}"

        sent, error = mailer.send(
            [recipient], f"Contact form message from {name}", html_body, text_body,
            reply_to=email,
        )
        if not sent:
            current_app.logger.error("Contact email delivery failed: %s", error)
            raise ExternalServiceError("We could not send your message. Please try again later.")

        return jsonify({"message": "Message sent."})
