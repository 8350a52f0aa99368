import logging
from datetime import datetime
from typing import Literal, Optional

from apscheduler.jobstores.base import JobLookupError
from fastapi import Depends, FastAPI, Header, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from starlette.exceptions import HTTPException as StarletteHTTPException

from afina.db.models import Payment, Subscription, SubscriptionLog, User
from afina.db.session import AsyncSessionLocal
from afina.payments.nowpayments_adapter import parse_ipn_body, verify_ipn_signature
from afina.repositories import payments as payment_repo
from afina.repositories import subscriptions as subscription_repo
from afina.repositories.subscription_logs import list_subscription_logs
from afina.repositories.users import get_user_by_id
from afina.scheduler import jobs
from afina.scheduler.setup import SCHEDULED_TASKS_JOB_ID, schedule_tasks_job
from afina.services.broadcast import get_target_telegram_ids, send_broadcast
from afina.services.payments import process_ipn
from afina.services.subscriptions import cancel_subscription, update_subscription
from afina.utils.dates import ensure_utc, utcnow
from config import settings


logger = logging.getLogger(__name__)

NULLABLE_FIELDS = {"start_date", "end_date", "notes"}


class SubscriptionUpdate(BaseModel):
    status: Optional[Literal["pending", "active", "expired", "cancelled"]] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    discord_role_granted: Optional[bool] = None
    notion_access_granted: Optional[bool] = None
    google_drive_access_granted: Optional[bool] = None
    auto_renew: Optional[bool] = None
    is_free: Optional[bool] = None
    notes: Optional[str] = None


class BroadcastRequest(BaseModel):
    text: str
    image_url: Optional[str] = None
    target: Literal["all", "with_subscription", "without_subscription"] = "all"


class UserUpdate(BaseModel):
    discord_id: Optional[str] = None
    discord_username: Optional[str] = None
    email: Optional[str] = None
    google_drive_email: Optional[str] = None


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse({"error": message}, status_code=status_code)


def _iso(value: datetime | None) -> str | None:
    return ensure_utc(value).isoformat() if value is not None else None


def _user_dict(user: User) -> dict:
    return {
        "id": user.id,
        "telegram_id": user.telegram_id,
        "telegram_username": user.telegram_username,
        "discord_id": user.discord_id,
        "discord_username": user.discord_username,
        "email": user.email,
        "google_drive_email": user.google_drive_email,
    }


def _subscription_dict(subscription: Subscription) -> dict:
    return {
        "id": subscription.id,
        "user_id": subscription.user_id,
        "tariff_id": subscription.tariff_id,
        "tariff_price_id": subscription.tariff_price_id,
        "period_months": subscription.period_months,
        "amount": str(subscription.amount),
        "currency": subscription.currency,
        "status": subscription.status,
        "start_date": _iso(subscription.start_date),
        "end_date": _iso(subscription.end_date),
        "is_free": subscription.is_free,
        "discord_role_granted": subscription.discord_role_granted,
        "notion_access_granted": subscription.notion_access_granted,
        "google_drive_access_granted": subscription.google_drive_access_granted,
        "auto_renew": subscription.auto_renew,
        "notes": subscription.notes,
    }


def _payment_dict(payment: Payment) -> dict:
    return {
        "id": payment.id,
        "external_id": payment.external_id,
        "status": payment.status,
        "amount": str(payment.amount),
        "currency": payment.currency,
        "provider_data": payment.provider_data,
        "error_message": payment.error_message,
        "paid_at": _iso(payment.paid_at),
        "created_at": _iso(payment.created_at),
    }


def _log_dict(entry: SubscriptionLog) -> dict:
    return {
        "id": entry.id,
        "action": entry.action,
        "details": entry.details,
        "created_at": _iso(entry.created_at),
    }


async def require_admin(authorization: str | None = Header(default=None)) -> None:
    token = settings.admin_api_token
    if not token or authorization != f"Bearer {token}":
        raise StarletteHTTPException(status_code=401, detail="Unauthorized")


def create_app(
    bot,
    session_factory=AsyncSessionLocal,
    scheduler=None,
) -> FastAPI:
    app = FastAPI()

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException):
        return _error(exc.status_code, str(exc.detail))

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        return _error(400, "Invalid request")

    @app.post("/api/nowpayments/webhook")
    async def nowpayments_webhook(request: Request):
        raw_body = await request.body()
        signature = request.headers.get("x-nowpayments-sig")
        if not verify_ipn_signature(raw_body, signature, settings.nowpayments_ipn_secret):
            logger.warning("Invalid IPN signature")
            return _error(401, "Invalid signature")
        try:
            payload = parse_ipn_body(raw_body)
            async with session_factory() as session:
                status = await process_ipn(session, bot, payload, utcnow())
                await session.commit()
        except Exception:
            logger.exception("Error processing NOWPayments webhook")
            return _error(500, "Webhook processing failed")
        return {"received": True, "status": status}

    @app.get("/api/nowpayments/webhook")
    async def nowpayments_webhook_health():
        return {
            "status": "ok",
            "message": "NOWPayments webhook endpoint",
            "timestamp": utcnow().isoformat(),
        }

    @app.get("/api/subscriptions/{subscription_id}", dependencies=[Depends(require_admin)])
    async def get_subscription(subscription_id: int):
        try:
            async with session_factory() as session:
                subscription = await subscription_repo.get_subscription_by_id(
                    session, subscription_id
                )
                if subscription is None:
                    return _error(404, "Subscription not found")
                user = await get_user_by_id(session, subscription.user_id)
                payments = await payment_repo.list_subscription_payments(
                    session, subscription_id
                )
                logs = await list_subscription_logs(session, subscription_id, limit=50)
                return {
                    "subscription": _subscription_dict(subscription),
                    "user": _user_dict(user) if user else None,
                    "payments": [_payment_dict(payment) for payment in payments],
                    "logs": [_log_dict(entry) for entry in logs],
                }
        except Exception:
            logger.exception(
                "Failed to load subscription", extra={"subscription_id": subscription_id}
            )
            return _error(500, "Internal server error")

    @app.put("/api/subscriptions/{subscription_id}", dependencies=[Depends(require_admin)])
    async def put_subscription(subscription_id: int, body: SubscriptionUpdate):
        changes = {
            key: value
            for key, value in body.model_dump(exclude_unset=True).items()
            if value is not None or key in NULLABLE_FIELDS
        }
        for key in ("start_date", "end_date"):
            if changes.get(key) is not None:
                changes[key] = ensure_utc(changes[key])
        if not changes:
            return _error(400, "No fields to update")
        try:
            async with session_factory() as session:
                subscription = await subscription_repo.get_subscription_by_id(
                    session, subscription_id
                )
                if subscription is None:
                    return _error(404, "Subscription not found")
                await update_subscription(session, bot, subscription, changes, utcnow())
                await session.commit()
                return {"success": True, "subscription": _subscription_dict(subscription)}
        except Exception:
            logger.exception(
                "Failed to update subscription",
                extra={"subscription_id": subscription_id},
            )
            return _error(500, "Internal server error")

    @app.delete(
        "/api/users/{user_id}/subscriptions/{subscription_id}",
        dependencies=[Depends(require_admin)],
    )
    async def delete_user_subscription(user_id: int, subscription_id: int):
        try:
            async with session_factory() as session:
                subscription = await subscription_repo.get_user_subscription(
                    session, user_id, subscription_id
                )
                if subscription is None:
                    return _error(404, "Subscription not found")
                await cancel_subscription(session, subscription, utcnow())
                await session.commit()
                return {"success": True, "subscription": _subscription_dict(subscription)}
        except Exception:
            logger.exception(
                "Failed to cancel subscription",
                extra={"user_id": user_id, "subscription_id": subscription_id},
            )
            return _error(500, "Internal server error")

    @app.patch("/api/users/{user_id}", dependencies=[Depends(require_admin)])
    async def patch_user(user_id: int, body: UserUpdate):
        changes = {
            key: (value.strip() or None) if isinstance(value, str) else value
            for key, value in body.model_dump(exclude_unset=True).items()
        }
        for key in ("email", "google_drive_email"):
            if changes.get(key) and "@" not in changes[key]:
                return _error(400, f"Invalid {key}")
        try:
            async with session_factory() as session:
                user = await get_user_by_id(session, user_id)
                if user is None:
                    return _error(404, "User not found")
                for key, value in changes.items():
                    setattr(user, key, value)
                await session.commit()
                return {"success": True, "user": _user_dict(user)}
        except Exception:
            logger.exception("Failed to update user", extra={"user_id": user_id})
            return _error(500, "Internal server error")

    @app.post("/api/admin/telegram/broadcast", dependencies=[Depends(require_admin)])
    async def telegram_broadcast(body: BroadcastRequest):
        if not body.text.strip():
            return _error(400, "Message text is required")
        try:
            async with session_factory() as session:
                telegram_ids = await get_target_telegram_ids(
                    session, body.target, utcnow()
                )
            if not telegram_ids:
                return {"success": False, "sent": 0, "failed": 0, "total": 0}
            report = await send_broadcast(bot, telegram_ids, body.text, body.image_url)
        except Exception:
            logger.exception("Broadcast failed", extra={"target": body.target})
            return _error(500, "Broadcast failed")
        return {"success": True, **report}

    @app.api_route(
        "/api/scheduler", methods=["GET", "POST"], dependencies=[Depends(require_admin)]
    )
    async def scheduler_control(action: str | None = None, interval: int | None = None):
        if action == "run":
            try:
                results = await jobs.run_scheduled_tasks(bot, session_factory)
            except Exception:
                logger.exception("Manual scheduler run failed")
                return _error(500, "Scheduler run failed")
            return {"success": True, "results": results}

        if scheduler is None:
            return _error(400, "Scheduler is not configured")

        if action == "start":
            minutes = interval or settings.scheduler_interval_minutes
            if minutes < 1:
                return _error(400, "Interval must be at least 1 minute")
            schedule_tasks_job(scheduler, bot, minutes, session_factory)
            if not scheduler.running:
                scheduler.start()
            logger.info("Scheduler started", extra={"interval_minutes": minutes})
            return {"success": True, "interval_minutes": minutes}

        if action == "stop":
            try:
                scheduler.pause_job(SCHEDULED_TASKS_JOB_ID)
            except JobLookupError:
                return _error(404, "Scheduler job not found")
            logger.info("Scheduler stopped")
            return {"success": True}

        if action is not None:
            return _error(400, f"Unknown action: {action}")

        job = scheduler.get_job(SCHEDULED_TASKS_JOB_ID)
        return {
            "running": bool(scheduler.running and job and job.next_run_time),
            "next_run_time": _iso(job.next_run_time) if job else None,
        }

    return app
