# coding: utf-8
"""
Sentry configuration for error monitoring

Events carry the Telegram user, the chat and (for button presses) the packet
id as tags, so a failed claim can be traced back to its packet.
"""
import sentry_sdk
from sentry_sdk.integrations.asyncio import AsyncioIntegration
from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration
from loguru import logger

from config.config import SENTRY_DSN, ENVIRONMENT

# Telegram answers these when a card is re-rendered unchanged or a button
# press arrives after the query timed out; nothing to fix on our side
IGNORED_TELEGRAM_ERRORS = (
    "message is not modified",
    "query is too old",
)


def init_sentry() -> None:
    """
    Initialize Sentry SDK for error monitoring

    Does nothing when SENTRY_DSN is empty.
    """
    if not SENTRY_DSN:
        logger.warning("SENTRY_DSN not configured - error monitoring disabled")
        return

    try:
        sentry_sdk.init(
            dsn=SENTRY_DSN,
            environment=ENVIRONMENT,
            integrations=[
                AsyncioIntegration(),
                SqlalchemyIntegration(),
            ],
            traces_sample_rate=0.1 if ENVIRONMENT == "production" else 1.0,
            attach_stacktrace=True,
            send_default_pii=False,
            max_breadcrumbs=50,
            before_send=before_send_hook,
        )
        logger.info(f"Sentry initialized (environment: {ENVIRONMENT})")

    except Exception as e:
        logger.error(f"Failed to initialize Sentry: {e}")


def before_send_hook(event, hint):
    """Drop shutdown interrupts and harmless Telegram edit/callback errors"""
    if 'exc_info' in hint:
        _, exc_value, _ = hint['exc_info']
        if isinstance(exc_value, KeyboardInterrupt):
            return None
        text = str(exc_value).lower()
        if any(marker in text for marker in IGNORED_TELEGRAM_ERRORS):
            return None

    return event


def set_user_context(user_id: int, username: str = None):
    """Attach the Telegram user to subsequent events"""
    sentry_sdk.set_user({
        "id": str(user_id),
        "username": username or f"user_{user_id}"
    })


def set_packet_context(chat_id: int = None, packet_id: str = None):
    """Tag subsequent events with the chat and packet being handled"""
    if chat_id is not None:
        sentry_sdk.set_tag("chat_id", str(chat_id))
    if packet_id:
        sentry_sdk.set_tag("packet_id", packet_id)


def add_breadcrumb(message: str, category: str = "default", level: str = "info", **data):
    """
    Add a breadcrumb (for debugging context)

    Args:
        message: Breadcrumb message
        category: Category (e.g., "update", "red_packet")
        level: Severity level
        data: Additional data
    """
    sentry_sdk.add_breadcrumb(
        message=message,
        category=category,
        level=level,
        data=data
    )
