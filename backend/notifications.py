"""Weekly report delivery: plain-text email over SMTP and a JSON webhook."""

import logging
import os
import smtplib
import ssl
from email.message import EmailMessage
from email.utils import formataddr
from pathlib import Path

import requests
from dotenv import load_dotenv

from models import SiteSnapshot

load_dotenv(dotenv_path=Path(__file__).resolve().parent / ".env")

logger = logging.getLogger(__name__)

WEBHOOK_TIMEOUT_SECONDS = 10


def build_weekly_email_body(snapshot: SiteSnapshot, trend_arrow: str, trend_label: str, report_url: str = "") -> str:
    avg = snapshot.get("avg_score")
    avg_text = "N/A" if avg is None else f"{round(float(avg), 1)}"
    lines = [
        f"Date: {snapshot['snapshot_date']}",
        f"AI Visibility Score: {avg_text} {trend_arrow}".rstrip(),
        f"Scanned items: {int(snapshot['scanned_count'])}",
        "",
        trend_label,
    ]
    if report_url:
        lines.extend(["", "Open your full AI Visibility report:", report_url])
    return "\n".join(lines) + "\n"


def send_weekly_email(*, recipient_email: str, site_name: str, body: str) -> bool:
    smtp_host = os.getenv("SMTP_HOST", "smtp.gmail.com")
    smtp_port = int(os.getenv("SMTP_PORT", "465"))
    smtp_username = os.getenv("SMTP_USERNAME", "").strip()
    smtp_password = os.getenv("SMTP_PASSWORD", "").strip()
    smtp_from_email = os.getenv("SMTP_FROM_EMAIL", smtp_username).strip()
    smtp_from_name = os.getenv("SMTP_FROM_NAME", site_name).strip() or site_name

    missing_keys = []
    if not recipient_email:
        missing_keys.append("REPORT_EMAIL_TO")
    if not smtp_username:
        missing_keys.append("SMTP_USERNAME")
    if not smtp_password:
        missing_keys.append("SMTP_PASSWORD")
    if not smtp_from_email:
        missing_keys.append("SMTP_FROM_EMAIL")
    if missing_keys:
        logger.warning("Weekly email skipped, missing settings: %s", ", ".join(missing_keys))
        return False

    message = EmailMessage()
    message["Subject"] = f"Your Weekly AI Visibility Update - {site_name}"
    message["From"] = formataddr((smtp_from_name, smtp_from_email))
    message["To"] = recipient_email
    message.set_content(body)

    try:
        context = ssl.create_default_context()
        with smtplib.SMTP_SSL(smtp_host, smtp_port, context=context, timeout=30) as smtp:
            smtp.login(smtp_username, smtp_password)
            smtp.send_message(message)
        logger.info("Weekly email sent to %s", recipient_email)
        return True
    except (smtplib.SMTPException, OSError) as e:
        logger.error("Weekly email failed: %s", e)
        return False


def send_webhook(url: str, payload: dict) -> tuple[int, str]:
    """POST `payload` as JSON. Returns (status_code, error); status 0 on transport failure."""
    try:
        response = requests.post(url, json=payload, timeout=WEBHOOK_TIMEOUT_SECONDS)
    except requests.RequestException as e:
        logger.warning("Webhook delivery to %s failed: %s", url, e)
        return 0, str(e)
    logger.info("Webhook delivered to %s: HTTP %d", url, response.status_code)
    return response.status_code, ""
