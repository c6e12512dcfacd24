"""
membership/notifier.py -- Outbound member notifications (welcome, approval).

Notifications are fire-and-forget. The lifecycle manager hands them to a
NotificationDispatcher *after* its transaction has committed; the dispatcher
runs them on a small thread pool and logs any failure. A broken mail provider
therefore never blocks, rolls back, or fails a registration or approval.

Providers:
  ResendNotifier -- Resend HTTP API (https://resend.com), used when
                    RESEND_API_KEY is configured.
  LogNotifier    -- dev fallback; logs what would have been sent.

Recipient addresses are redacted in log lines to keep PII out of logs.
"""

from __future__ import annotations

import logging
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from typing import Callable, Optional, Protocol

import requests

from membership.models import Association, Member

logger = logging.getLogger("memberportal.notify")

RESEND_API = "https://api.resend.com/emails"


class Notifier(Protocol):
    def send_welcome(self, member: Member, association: Association) -> None: ...

    def send_approval(self, member: Member, association: Association) -> None: ...


def redact_email(email: str) -> str:
    """Return "al***@example.com" for "alice@example.com"."""
    if "@" not in email:
        return "redacted"
    local, domain = email.split("@", 1)
    return f"{local[:2]}***@{domain}"


# ---------------------------------------------------------------------------
# Message bodies
# ---------------------------------------------------------------------------


def welcome_message(member: Member, association: Association) -> tuple[str, str]:
    """Return (subject, text body) for the registration welcome email."""
    subject = f"Welcome to {association.name}!"
    body = (
        f"Hello {member.name},\n\n"
        f"Thank you for registering with {association.name}. "
        f"Your member number is {member.member_code}.\n\n"
        "Your account is pending approval. You will receive another email "
        "once an administrator has reviewed your registration.\n"
    )
    return subject, body


def approval_message(member: Member, association: Association) -> tuple[str, str]:
    """Return (subject, text body) for the membership approval email."""
    subject = f"Your membership has been approved - {association.name}"
    body = (
        f"Hello {member.name},\n\n"
        f"Your membership with {association.name} has been approved. "
        "You can now log in to the member portal.\n\n"
        f"Member number: {member.member_code}\n"
    )
    return subject, body


# ---------------------------------------------------------------------------
# Providers
# ---------------------------------------------------------------------------


class LogNotifier:
    """Logs notifications instead of sending them. Used when no provider is configured."""

    def _log(self, kind: str, member: Member, association: Association) -> None:
        logger.info(
            "Notification (log only): %s to %s for association %s",
            kind,
            redact_email(member.email),
            association.code,
        )

    def send_welcome(self, member: Member, association: Association) -> None:
        self._log("welcome", member, association)

    def send_approval(self, member: Member, association: Association) -> None:
        self._log("approval", member, association)


class ResendNotifier:
    """Sends notifications through the Resend HTTP API.

    Raises requests.RequestException on transport or HTTP errors; the
    dispatcher is responsible for catching and logging them.
    """

    def __init__(self, api_key: str, from_email: str, session: Optional[requests.Session] = None) -> None:
        self._api_key = api_key
        self.from_email = from_email
        self._session = session or requests.Session()
        # Known endpoint; no reason to follow long redirect chains.
        self._session.max_redirects = 3

    def _send(self, to: str, subject: str, text: str) -> None:
        resp = self._session.post(
            RESEND_API,
            headers={"Authorization": f"Bearer {self._api_key}"},
            json={"from": self.from_email, "to": [to], "subject": subject, "text": text},
            timeout=10,
        )
        resp.raise_for_status()
        logger.info("Email sent to %s (%s)", redact_email(to), subject)

    def send_welcome(self, member: Member, association: Association) -> None:
        subject, text = welcome_message(member, association)
        self._send(member.email, subject, text)

    def send_approval(self, member: Member, association: Association) -> None:
        subject, text = approval_message(member, association)
        self._send(member.email, subject, text)


def build_notifier(api_key: str, from_email: str) -> Notifier:
    """Return ResendNotifier when an API key is configured, else LogNotifier."""
    if api_key:
        return ResendNotifier(api_key, from_email)
    logger.warning("RESEND_API_KEY not configured -- notifications will only be logged")
    return LogNotifier()


# ---------------------------------------------------------------------------
# Dispatcher
# ---------------------------------------------------------------------------


class NotificationDispatcher:
    """Runs notifier calls off the request path and isolates their failures.

    executor=None runs each call inline (still isolated); the API wires in a
    ThreadPoolExecutor so a slow provider never delays a response.
    """

    def __init__(self, notifier: Notifier, executor: Optional[Executor] = None) -> None:
        self.notifier = notifier
        self._executor = executor

    @classmethod
    def threaded(cls, notifier: Notifier, workers: int = 2) -> "NotificationDispatcher":
        return cls(notifier, ThreadPoolExecutor(max_workers=workers, thread_name_prefix="notify"))

    def _run(self, kind: str, fn: Callable[[Member, Association], None], member: Member, association: Association):
        try:
            fn(member, association)
        except Exception:
            logger.exception("Failed to send %s notification for member %s", kind, member.id)

    def _dispatch(self, kind: str, fn, member: Member, association: Association) -> Optional[Future]:
        if self._executor is None:
            self._run(kind, fn, member, association)
            return None
        try:
            return self._executor.submit(self._run, kind, fn, member, association)
        except RuntimeError:
            # Executor already shut down (process is stopping).
            logger.warning("Dropped %s notification for member %s: dispatcher closed", kind, member.id)
            return None

    def welcome(self, member: Member, association: Association) -> Optional[Future]:
        return self._dispatch("welcome", self.notifier.send_welcome, member, association)

    def approval(self, member: Member, association: Association) -> Optional[Future]:
        return self._dispatch("approval", self.notifier.send_approval, member, association)

    def close(self) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=True)
