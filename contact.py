import html
from typing import Any, Dict

import httpx

from app_logger import get_logger
from config import get_settings
from errors import InvalidRequestError, ServiceUnavailableError

logger = get_logger("contact")


def validate_contact(name: str, email: str, message: str) -> None:
    if not name or not email or not message:
        raise InvalidRequestError("Name, email and message are required")
    if "@" not in email or "." not in email:
        raise InvalidRequestError("Please enter a valid email address")


def render_contact_html(name: str, email: str, message: str) -> str:
    body = html.escape(message).replace("\n", "<br>")
    return (
        "<h2>New contact message</h2>"
        f"<p><strong>Name:</strong> {html.escape(name)}</p>"
        f"<p><strong>Email:</strong> {html.escape(email)}</p>"
        "<p><strong>Message:</strong></p>"
        f"<p>{body}</p>"
    )


def send_contact_message(name: str, email: str, message: str) -> Dict[str, Any]:
    """Send the contact form to the site inbox through Resend, replying to the sender."""
    validate_contact(name, email, message)

    settings = get_settings()
    if not settings.resend_api_key:
        logger.error("Resend API key not configured")
        raise ServiceUnavailableError("Email service not configured")

    payload = {
        "from": settings.contact_from,
        "to": [settings.contact_to],
        "subject": f"New contact message from {name}",
        "html": render_contact_html(name, email, message),
        "reply_to": email,
    }
    try:
        resp = httpx.post(
            settings.resend_api_url,
            json=payload,
            headers={"Authorization": f"Bearer {settings.resend_api_key}"},
            timeout=10.0,
        )
        resp.raise_for_status()
        data = resp.json()
    except (httpx.HTTPError, ValueError) as e:
        logger.error("Error sending contact email: %s", e)
        raise ServiceUnavailableError("Error sending the message") from e

    logger.info("Contact message from %s delivered", email)
    return data
