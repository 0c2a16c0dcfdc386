"""
shared/utils/notifications.py
Outbound messaging: Twilio SMS and Firebase Cloud Messaging push.

Delivery is best effort. Failures are logged and reported through the
return value, never raised into the request that triggered them.
"""

import json
import logging
from typing import Iterable, List, Optional

import firebase_admin
from fastapi.concurrency import run_in_threadpool
from firebase_admin import credentials, exceptions, messaging
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession
from twilio.rest import Client

from config.settings import settings
from shared.models.models import DeviceToken

logger = logging.getLogger(__name__)


# ── SMS ───────────────────────────────────────────────────────

def _to_e164(phone: str) -> str:
    return phone if phone.startswith("+") else f"{settings.SMS_COUNTRY_CODE}{phone}"


async def send_sms(phone: str, body: str) -> bool:
    """Send SMS via Twilio. Returns True on success."""
    if not settings.sms_enabled:
        return False
    try:
        client = Client(settings.TWILIO_ACCOUNT_SID, settings.TWILIO_AUTH_TOKEN)
        await run_in_threadpool(
            client.messages.create,
            body=body,
            from_=settings.TWILIO_FROM_NUMBER,
            to=_to_e164(phone),
        )
        return True
    except Exception as e:
        logger.warning(f"SMS to {_to_e164(phone)} failed: {e}")
        return False


async def send_otp_sms(phone: str, code: str) -> bool:
    """Deliver an OTP. Without a working SMS provider the code goes to the log."""
    target = _to_e164(phone)
    if not settings.sms_enabled:
        logger.info(f"[DEV] OTP for {target}: {code}")
        return False

    body = (
        f"Your Urban Auto verification code is: {code}. "
        f"Valid for {settings.OTP_EXPIRE_MINUTES} minutes."
    )
    sent = await send_sms(phone, body)
    if not sent:
        logger.warning(f"[FALLBACK] OTP for {target}: {code}")
    return sent


# ── Push (FCM) ────────────────────────────────────────────────

def _init_firebase() -> bool:
    """Initialise the default Firebase app once. False when unconfigured."""
    try:
        firebase_admin.get_app()
        return True
    except ValueError:
        pass

    if not settings.firebase_enabled:
        logger.error("FCM not initialized: no Firebase service account configured")
        return False

    try:
        if settings.FIREBASE_SERVICE_ACCOUNT_JSON:
            service_account = json.loads(settings.FIREBASE_SERVICE_ACCOUNT_JSON)
            if not service_account.get("project_id"):
                logger.error("Firebase service account missing project_id")
                return False
            cred = credentials.Certificate(service_account)
        else:
            cred = credentials.Certificate(settings.FIREBASE_CREDENTIALS_PATH)
        firebase_admin.initialize_app(cred)
    except (ValueError, OSError) as e:
        logger.error(f"Firebase admin initialization error: {e}")
        return False

    logger.info("Firebase Admin initialized")
    return True


def _is_dead_token(error: Optional[Exception]) -> bool:
    return isinstance(error, (messaging.UnregisteredError, exceptions.InvalidArgumentError))


def _build_message(tokens: List[str], title: str, body: str, data: dict) -> messaging.MulticastMessage:
    return messaging.MulticastMessage(
        tokens=tokens,
        notification=messaging.Notification(title=title, body=body),
        data={k: str(v) for k, v in data.items()},
        android=messaging.AndroidConfig(
            priority="high",
            notification=messaging.AndroidNotification(
                sound="default",
                click_action=data.get("type"),
            ),
        ),
        apns=messaging.APNSConfig(
            payload=messaging.APNSPayload(aps=messaging.Aps(sound="default"))
        ),
    )


async def send_push_notification(
    db: AsyncSession,
    tokens: Iterable[Optional[str]],
    title: str,
    body: str,
    data: Optional[dict] = None,
) -> List[str]:
    """
    Multicast a notification to `tokens` and return the ones FCM rejected
    as unregistered or invalid. Those are also removed from device_tokens.
    """
    valid_tokens = [t for t in tokens if t and t.strip()]
    if not valid_tokens or not _init_firebase():
        return []

    dead: List[str] = []
    batch_size = settings.FCM_MULTICAST_BATCH_SIZE
    for start in range(0, len(valid_tokens), batch_size):
        batch = valid_tokens[start:start + batch_size]
        try:
            response = await run_in_threadpool(
                messaging.send_each_for_multicast,
                _build_message(batch, title, body, data or {}),
            )
        except Exception as e:
            logger.error(f"Error sending multicast message: {e}")
            continue

        logger.info(
            f"FCM delivery: {response.success_count} successes, "
            f"{response.failure_count} failures"
        )
        for token, resp in zip(batch, response.responses):
            if not resp.success and _is_dead_token(resp.exception):
                dead.append(token)

    if dead:
        await db.execute(delete(DeviceToken).where(DeviceToken.token.in_(dead)))
        logger.info(f"Pruned {len(dead)} invalid device tokens")
    return dead


async def notify_user(
    db: AsyncSession,
    user_id,
    title: str,
    body: str,
    data: Optional[dict] = None,
) -> List[str]:
    """Push to every device registered by one user."""
    result = await db.execute(select(DeviceToken.token).where(DeviceToken.user_id == user_id))
    return await send_push_notification(db, result.scalars().all(), title, body, data)
