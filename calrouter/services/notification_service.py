"""
notification_service.py — Account emails (trial reminders, expiry, failure alerts)

Sends plain-text emails through the Resend HTTP API on the shared httpx client.

Business Rules:
- enable_emails=False: nothing is sent, the would-be email is logged
- No RESEND_API_KEY: dev mode, the email is logged instead of sent
- A transport failure or non-2xx answer raises NotificationError so the
  caller can retry; callers (the sweeps) never let it escape further

Called by: services/trial_sweep.py, services/failure_sweep.py (via get_notifier)
Depends on: http_client.py, config.py, exceptions.py
"""

import logging

import httpx

from ..config import settings
from ..exceptions import NotificationError

log = logging.getLogger("calrouter.notifications")

RESEND_API_URL = "https://api.resend.com/emails"

CATEGORY_TRIAL_ENDING = "trial_ending"
CATEGORY_TRIAL_EXPIRED = "trial_expired"
CATEGORY_WEBHOOK_FAILURE = "webhook_failure"

SIGNATURE = "Best regards,\nCalRouter Team"


def trial_ending_email(days_left: int, app_url: str) -> tuple[str, str]:
    subject = f"Your CalRouter Trial Ends in {days_left} Days"
    body = f"""Dear CalRouter User,

Your CalRouter trial is ending soon. Don't lose access to:
- Automatic reschedule detection
- Custom question parsing
- UTM parameter tracking
- Advanced analytics

Upgrade now to keep your webhooks enriched:
{app_url}/dashboard/billing

{SIGNATURE}"""
    return subject, body


def trial_expired_email(app_url: str) -> tuple[str, str]:
    subject = "Your CalRouter Trial Has Expired"
    body = f"""Dear CalRouter User,

Your free trial has ended.

What happens now:
- Your webhook endpoints have been disabled
- Your data will be retained for 30 days
- You can upgrade anytime to continue using CalRouter

Upgrade here: {app_url}/dashboard/billing

{SIGNATURE}"""
    return subject, body


def webhook_failure_email(
    endpoint_name: str, failure_count: int, last_error: str, app_url: str
) -> tuple[str, str]:
    subject = f'Webhook Failures Detected: "{endpoint_name}"'
    body = f"""Dear CalRouter User,

Your webhook endpoint "{endpoint_name}" has experienced {failure_count} consecutive failures.

Last error:
{last_error}

What to check:
- Is your destination URL correct and accessible?
- Is your webhook service (Zapier/Make/n8n) running?
- Are there any authentication or rate limit issues?

View details and fix: {app_url}/dashboard/logs

Your endpoint will continue receiving webhooks, but enriched data is not being delivered.

{SIGNATURE}"""
    return subject, body


class EmailNotifier:
    """Category-level email sender. One instance per process is enough."""

    def __init__(
        self,
        api_key: str | None = None,
        sender: str | None = None,
        enabled: bool | None = None,
        app_url: str | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        self.api_key = settings.resend_api_key if api_key is None else api_key
        self.sender = sender or settings.email_from
        self.enabled = settings.enable_emails if enabled is None else enabled
        self.app_url = (app_url or settings.app_url).rstrip("/")
        self._client = client

    async def send_trial_ending(self, to: str, days_left: int) -> None:
        subject, body = trial_ending_email(days_left, self.app_url)
        await self._send(CATEGORY_TRIAL_ENDING, to, subject, body)

    async def send_trial_expired(self, to: str) -> None:
        subject, body = trial_expired_email(self.app_url)
        await self._send(CATEGORY_TRIAL_EXPIRED, to, subject, body)

    async def send_webhook_failure(
        self, to: str, endpoint_name: str, failure_count: int, last_error: str | None
    ) -> None:
        subject, body = webhook_failure_email(
            endpoint_name, failure_count, last_error or "Unknown error", self.app_url
        )
        await self._send(CATEGORY_WEBHOOK_FAILURE, to, subject, body)

    async def _send(self, category: str, to: str, subject: str, body: str) -> None:
        if not self.enabled:
            log.info(f"[Email disabled] Would send {category} to {to}: {subject}")
            return
        if not self.api_key:
            log.info(f"[Dev mode] Email {category} to {to}: {subject}\n{body}")
            return

        client = self._client
        if client is None:
            from ..http_client import http as client

        try:
            resp = await client.post(
                RESEND_API_URL,
                json={"from": self.sender, "to": [to], "subject": subject, "text": body},
                headers={"Authorization": f"Bearer {self.api_key}"},
                timeout=15,
            )
        except httpx.HTTPError as e:
            raise NotificationError(category, f"transport error: {e}") from e

        if resp.status_code not in (200, 201, 202):
            raise NotificationError(
                category, f"Resend returned {resp.status_code}: {resp.text[:200]}"
            )

        email_id = None
        try:
            email_id = resp.json().get("id")
        except ValueError:
            pass
        log.info(f"Email {category} sent to {to} (id={email_id})")


_default_notifier: EmailNotifier | None = None


def get_notifier() -> EmailNotifier:
    """FastAPI dependency: the process-wide notifier, created on first use."""
    global _default_notifier
    if _default_notifier is None:
        _default_notifier = EmailNotifier()
    return _default_notifier
