# app/core/email.py
"""
Email service using Resend for supervisor alerts.
"""
from typing import Optional

import resend

from app.core.config import Settings


def init_resend(api_key: Optional[str]):
    """Initialize Resend with API key."""
    resend.api_key = api_key


def send_device_eviction_alert(
    settings: Settings,
    *,
    credential_id: str,
    credential_label: Optional[str],
    evicted_device_session_id: str,
    admitted_device_session_id: str,
    capacity: int,
) -> dict:
    """
    Tell the supervisor that a class login is over capacity and an older
    device was signed out to make room.

    Args:
        settings: Application settings (API key, sender domain, recipient)
        credential_id: The class login that hit its limit
        credential_label: Human-readable class login name, if set
        evicted_device_session_id: Device session that was signed out
        admitted_device_session_id: Device session that took its place
        capacity: Device limit of the class login

    Returns:
        Resend API response
    """
    init_resend(settings.RESEND_API_KEY)

    name = credential_label or credential_id

    html_content = f"""
    <!DOCTYPE html>
    <html>
    <head>
        <meta charset="utf-8">
        <style>
            body {{ font-family: Arial, sans-serif; line-height: 1.6; color: #333; }}
            .container {{ max-width: 600px; margin: 0 auto; padding: 20px; }}
            .header {{ background: #b45309; color: white; padding: 20px; text-align: center; border-radius: 10px 10px 0 0; }}
            .content {{ background: #f9f9f9; padding: 30px; border-radius: 0 0 10px 10px; }}
            .details {{ background: white; padding: 15px; border-radius: 8px; margin: 15px 0; }}
        </style>
    </head>
    <body>
        <div class="container">
            <div class="header">
                <h1>Device limit reached</h1>
            </div>
            <div class="content">
                <p>The class login <strong>{name}</strong> reached its limit of {capacity} devices.</p>
                <p>The least recently active device was signed out so a new device could join.</p>
                <div class="details">
                    <p><strong>Class login:</strong> {credential_id}</p>
                    <p><strong>Signed out device session:</strong> {evicted_device_session_id}</p>
                    <p><strong>Newly admitted device session:</strong> {admitted_device_session_id}</p>
                </div>
                <p>If this keeps happening, consider raising the device limit for this class login.</p>
            </div>
        </div>
    </body>
    </html>
    """

    params = {
        "from": f"Class Access <alerts@{settings.RESEND_FROM_DOMAIN}>",
        "to": [settings.SUPERVISOR_EMAIL],
        "subject": f"Device limit reached for {name}",
        "html": html_content,
    }

    return resend.Emails.send(params)
