"""
tasks/notification_tasks.py
Celery tasks for transactional email and periodic housekeeping.

Usage from a route:
    from tasks.notification_tasks import enqueue, send_verification_email
    enqueue(send_verification_email, user.email, token)
"""

import logging
import uuid
from datetime import datetime, timedelta, timezone

import pybreaker
import resend
from celery import Task
from kombu.exceptions import OperationalError
from sqlalchemy import create_engine, delete, or_, select
from sqlalchemy.orm import selectinload, sessionmaker

from config.settings import settings
from tasks.celery_app import celery_app

logger = logging.getLogger(__name__)


# ── Base Task with DB session ──────────────────────────────────────────────────

class DatabaseTask(Task):
    """Base class that provides a synchronous DB session for tasks."""
    abstract = True
    _session_factory = None

    def get_session(self):
        """Get a synchronous SQLAlchemy session (Celery runs sync by default)."""
        if DatabaseTask._session_factory is None:
            # postgresql+asyncpg:// → postgresql+psycopg2://
            sync_url = settings.DATABASE_URL.replace("+asyncpg", "+psycopg2")
            engine = create_engine(sync_url, pool_pre_ping=True)
            DatabaseTask._session_factory = sessionmaker(bind=engine)
        return DatabaseTask._session_factory()


# ── Email delivery ─────────────────────────────────────────────────────────────

class _BreakerLogListener(pybreaker.CircuitBreakerListener):
    def state_change(self, cb, old_state, new_state):
        logger.warning(f"Circuit breaker '{cb.name}' {old_state.name} -> {new_state.name}")


# Opens after 5 consecutive Resend failures, retries after 60s
email_breaker = pybreaker.CircuitBreaker(
    fail_max=5,
    reset_timeout=60,
    name="resend",
    listeners=[_BreakerLogListener()],
)


@email_breaker
def _deliver(to_email: str, subject: str, html_body: str) -> None:
    resend.api_key = settings.RESEND_API_KEY
    resend.Emails.send({
        "from": f"{settings.EMAIL_FROM_NAME} <{settings.EMAIL_FROM}>",
        "to": to_email,
        "subject": subject,
        "html": html_body,
    })


def _send_email(to_email: str, subject: str, html_body: str) -> bool:
    """Send transactional email via Resend. Returns True on success."""
    try:
        _deliver(to_email, subject, html_body)
        return True
    except pybreaker.CircuitBreakerError:
        logger.warning(f"Email to {to_email} skipped: circuit open")
        return False
    except Exception as e:
        logger.warning(f"Email send failed: {e}")
        return False


# ── Enqueueing ────────────────────────────────────────────────────────────────

def enqueue(task, *args) -> bool:
    """
    Queue a task from a request handler after its data is committed.
    A broker outage is logged and reported as False; the request still succeeds.
    """
    try:
        task.delay(*args)
        return True
    except OperationalError as e:
        logger.error(f"Could not enqueue {task.name}: {e}")
        return False


# ── Templates ─────────────────────────────────────────────────────────────────

TEMPLATES = {
    "VERIFY_EMAIL": {
        "subject": "Verify your email address",
        "html": (
            "<h2>Welcome to {app_name}!</h2>"
            "<p>Please verify your email by clicking the link below:</p>"
            '<a href="{verify_url}">{verify_url}</a>'
            "<p>This link will expire in {minutes} minutes.</p>"
        ),
    },
    "VIEWING_REQUESTED": {
        "subject": "New viewing request for {title}",
        "html": (
            "<p>{student_name} would like to view <b>{title}</b> on {when}.</p>"
            "<p>{message}</p>"
        ),
    },
    "VIEWING_APPROVED": {
        "subject": "Viewing approved: {title}",
        "html": "<p>Your viewing of <b>{title}</b> on {when} has been approved.</p>",
    },
    "VIEWING_REJECTED": {
        "subject": "Viewing declined: {title}",
        "html": "<p>Your viewing request for <b>{title}</b> on {when} was declined.</p>",
    },
}


def _render(template: str, **kwargs) -> str:
    """Simple string template renderer."""
    for key, value in kwargs.items():
        template = template.replace(f"{{{key}}}", str(value))
    return template


# ── Tasks ─────────────────────────────────────────────────────────────────────

@celery_app.task(bind=True, max_retries=3, default_retry_delay=60)
def send_email(self, to_email: str, subject: str, html_body: str):
    """Send a transactional email via Resend with retry on failure."""
    if not _send_email(to_email, subject, html_body):
        raise self.retry(countdown=60 * (2 ** self.request.retries))


@celery_app.task(bind=True, max_retries=3, default_retry_delay=60)
def send_verification_email(self, email: str, token: str):
    """Email the signup confirmation link. The token is valid for 15 minutes."""
    tmpl = TEMPLATES["VERIFY_EMAIL"]
    html = _render(
        tmpl["html"],
        app_name=settings.EMAIL_FROM_NAME,
        verify_url=f"{settings.EMAIL_VERIFY_URL}{token}",
        minutes=settings.JWT_VERIFY_TOKEN_EXPIRE_MINUTES,
    )
    if not _send_email(email, tmpl["subject"], html):
        raise self.retry(countdown=60 * (2 ** self.request.retries))


@celery_app.task(bind=True, base=DatabaseTask, max_retries=3)
def notify_viewing_request(self, request_id: str, event: str):
    """
    Tell the other party about a viewing request.
    - created: the landlord who owns the property
    - approved / rejected: the requesting student
    """
    from shared.models.models import Property, ViewingRequest

    template_key = {
        "created": "VIEWING_REQUESTED",
        "approved": "VIEWING_APPROVED",
        "rejected": "VIEWING_REJECTED",
    }.get(event)
    if template_key is None:
        logger.error(f"notify_viewing_request: unknown event '{event}'")
        return

    db = self.get_session()
    try:
        request = db.execute(
            select(ViewingRequest)
            .options(
                selectinload(ViewingRequest.student),
                selectinload(ViewingRequest.property).selectinload(Property.landlord),
            )
            .where(ViewingRequest.id == uuid.UUID(request_id))
        ).scalar_one_or_none()
        if not request:
            logger.error(f"notify_viewing_request: request {request_id} not found")
            return

        recipient = request.property.landlord if event == "created" else request.student
        tmpl = TEMPLATES[template_key]
        context = {
            "title": request.property.title,
            "student_name": request.student.name,
            "when": request.requested_date.strftime("%d %b %Y, %H:%M"),
            "message": request.message or "",
        }
        send_email.delay(
            recipient.email,
            _render(tmpl["subject"], **context),
            _render(tmpl["html"], **context),
        )
    except Exception as e:
        logger.exception(f"notify_viewing_request failed: {e}")
        raise self.retry(exc=e, countdown=60)
    finally:
        db.close()


# ── Periodic / Scheduled Tasks ────────────────────────────────────────────────

@celery_app.task(bind=True, base=DatabaseTask)
def purge_expired_refresh_tokens(self):
    """
    Beat task: runs daily.
    Removes refresh tokens that have expired, and revoked tokens older than a day.
    """
    from shared.models.models import RefreshToken

    now = datetime.now(timezone.utc)
    db = self.get_session()
    try:
        result = db.execute(
            delete(RefreshToken).where(
                or_(
                    RefreshToken.expires_at < now,
                    (RefreshToken.is_revoked == True)  # noqa: E712
                    & (RefreshToken.created_at < now - timedelta(days=1)),
                )
            )
        )
        db.commit()
        logger.info(f"Purged {result.rowcount} refresh tokens")
        return result.rowcount
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
