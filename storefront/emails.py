from datetime import datetime
from typing import Dict, List, Optional, Tuple

import resend
from flask import current_app

from .helpers import normalize_email, safe_float, safe_positive_int


def send_email_via_resend(payload: Dict[str, object], api_key: str):
    configured_api_key = (api_key or "").strip()
    if not configured_api_key:
        return False, "Resend API key is not configured."

    previous_api_key = getattr(resend, "api_key", None)
    resend.api_key = configured_api_key
    try:
        response = resend.Emails.send(payload)
    except Exception as exc:
        return False, str(exc)
    finally:
        resend.api_key = previous_api_key

    if not isinstance(response, dict) or not response.get("id"):
        return False, str(response)

    return True, None


def _sender() -> str:
    config = current_app.config
    return f"{config['APP_NAME']} <{config['EMAIL_SENDER']}>"


def _deliver(recipient_email: str, subject: str, html_body: str, text_body: str):
    payload: Dict[str, object] = {
        "from": _sender(),
        "to": [recipient_email],
        "subject": subject,
        "html": html_body,
        "text": text_body,
    }
    api_key = current_app.config.get("RESEND_API_KEY", "")
    if not api_key:
        current_app.logger.warning(
            "Email to %s not sent: RESEND_API_KEY is not configured", recipient_email
        )
    sent, error_details = send_email_via_resend(payload, api_key)
    if not sent and api_key:
        current_app.logger.error(
            "Email delivery to %s failed: %s",
            recipient_email,
            error_details or "Unknown Resend error",
        )
    return sent, error_details


def _code_block_html(title: str, intro: str, otp: str, footer: str) -> str:
    return f"""<!DOCTYPE html>
<html lang="en">
  <body style="margin:0;padding:32px 16px;background:#f5f6f8;font-family:'Segoe UI',Arial,sans-serif;color:#1b1f24;">
    <table width="100%" cellpadding="0" cellspacing="0" role="presentation" style="max-width:520px;margin:0 auto;background:#ffffff;border-radius:16px;">
      <tr>
        <td style="padding:36px 32px;">
          <h1 style="margin:0 0 12px 0;font-size:22px;">{title}</h1>
          <p style="margin:0 0 24px 0;font-size:15px;line-height:1.6;">{intro}</p>
          <p style="margin:0;text-align:center;font-size:32px;letter-spacing:0.35em;font-weight:700;">{otp}</p>
          <p style="margin:24px 0 0 0;font-size:13px;color:#5b6470;">{footer}</p>
        </td>
      </tr>
    </table>
  </body>
</html>"""


def send_verification_email(recipient_email: str, otp: str, expiration_hours: int):
    app_name = current_app.config["APP_NAME"]
    html_body = _code_block_html(
        f"Verify your {app_name} email address",
        f"Enter the code below to confirm your email. It is valid for {expiration_hours} hours.",
        otp,
        "If you did not create an account you can ignore this email.",
    )
    text_body = (
        f"Your {app_name} verification code is {otp}. "
        f"Enter it within {expiration_hours} hours to confirm this email."
    )
    return _deliver(
        recipient_email, f"{app_name} - Verify your email", html_body, text_body
    )


def send_password_reset_email(recipient_email: str, otp: str, expiration_minutes: int):
    app_name = current_app.config["APP_NAME"]
    html_body = _code_block_html(
        "Reset your password",
        f"Use this code to reset your {app_name} password within {expiration_minutes} minutes.",
        otp,
        "If you did not request a password reset you can ignore this email.",
    )
    text_body = (
        f"Use this code {otp} to reset your {app_name} password within "
        f"{expiration_minutes} minutes."
    )
    return _deliver(
        recipient_email, f"{app_name} - Password reset", html_body, text_body
    )


def normalize_order_email_items(items: List[Dict]) -> List[Dict]:
    normalized_items: List[Dict] = []
    for entry in items or []:
        if not isinstance(entry, dict):
            continue
        name = str(entry.get("name") or "").strip() or "Item"
        quantity = safe_positive_int(entry.get("quantity"), 1) or 1
        price_value = round(safe_float(entry.get("price"), 0.0))
        normalized_items.append(
            {
                "name": name,
                "quantity": quantity,
                "price": price_value,
                "line_total": price_value * quantity,
            }
        )
    return normalized_items


def send_order_confirmation_email(
    order_document: Dict[str, object], recipient_email: str
) -> Tuple[bool, Optional[str]]:
    normalized_email = normalize_email(recipient_email)
    if not normalized_email:
        return False, "Missing customer email for the order receipt."

    app_name = current_app.config["APP_NAME"]
    normalized_items = normalize_order_email_items(order_document.get("items"))
    currency_code = str(order_document.get("currency") or "VND").upper()
    total_value = round(safe_float(order_document.get("total"), 0.0))
    order_number = str(order_document.get("order_number") or "").strip() or "Order"

    created_at_value = order_document.get("created_at")
    if not isinstance(created_at_value, datetime):
        created_at_value = datetime.utcnow()

    rows = "".join(
        f"<tr><td>{item['name']}</td><td>x{item['quantity']}</td>"
        f"<td style=\"text-align:right;\">{item['line_total']:,} {currency_code}</td></tr>"
        for item in normalized_items
    )
    html_body = f"""<!DOCTYPE html>
<html lang="en">
  <body style="font-family:'Segoe UI',Arial,sans-serif;color:#1b1f24;">
    <h1 style="font-size:22px;">Thank you for your order {order_number}</h1>
    <p>Placed on {created_at_value.strftime('%Y-%m-%d %H:%M')} UTC.</p>
    <table cellpadding="6" cellspacing="0" role="presentation">{rows}</table>
    <p style="font-weight:700;">Total: {total_value:,} {currency_code}</p>
  </body>
</html>"""
    item_lines = ", ".join(
        f"{item['name']} x{item['quantity']} ({item['price']:,} {currency_code})"
        for item in normalized_items
    )
    text_body = (
        f"Thank you for your purchase! Order {order_number} on "
        f"{created_at_value.strftime('%Y-%m-%d %H:%M')}.\n"
        f"Items: {item_lines}.\n"
        f"Total: {total_value:,} {currency_code}.\n\n"
        f"{app_name} Team"
    )

    return _deliver(
        normalized_email, f"{app_name} - Order {order_number} received", html_body, text_body
    )
