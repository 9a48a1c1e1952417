"""Leave notifications — best-effort email after a committed state change.

A failed email is logged and counted in the returned :class:`DispatchResult`;
it never raises, so the decision that triggered it always stands.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Iterable, Optional, Sequence

from fastapi.concurrency import run_in_threadpool

from leave_tracker.common.constants import LeaveStatus
from leave_tracker.config import settings
from leave_tracker.leave.balance import format_amount
from leave_tracker.notifications.email import EmailSender, build_sender

logger = logging.getLogger(__name__)


@dataclass
class DispatchResult:
    sent: int = 0
    failed: int = 0
    errors: list[str] = field(default_factory=list)

    def merge(self, other: "DispatchResult") -> "DispatchResult":
        self.sent += other.sent
        self.failed += other.failed
        self.errors.extend(other.errors)
        return self


def _describe_range(request: Any) -> str:
    start, end = request.start_date, request.end_date
    if start == end:
        return start.isoformat()
    return f"{start.isoformat()} to {end.isoformat()}"


def _type_label(request: Any) -> str:
    leave_type = getattr(request, "effective_type", None) or request.type
    return f"{leave_type.value} leave" if leave_type.value != "toil" else "TOIL"


class Notifier:
    """Composes leave emails and pushes them through an ``EmailSender``."""

    def __init__(self, sender: EmailSender) -> None:
        self.sender = sender

    async def _send(self, to_addr: Optional[str], subject: str, body: str) -> DispatchResult:
        result = DispatchResult()
        if not to_addr:
            return result
        try:
            await run_in_threadpool(self.sender.send, to_addr, subject, body)
            result.sent += 1
        except Exception as exc:  # noqa: BLE001
            logger.exception("Email to %s failed (subject %r)", to_addr, subject)
            result.failed += 1
            result.errors.append(f"{to_addr}: {exc}")
        return result

    # ── Single-request events ──────────────────────────────────────

    async def leave_submitted(
        self, request: Any, user: Any, admin_emails: Iterable[str],
    ) -> DispatchResult:
        subject = f"New leave request from {user.display_name}"
        body = (
            f"{user.display_name} has requested {_type_label(request)} "
            f"for {_describe_range(request)}.\n"
        )
        if request.comments:
            body += f"\nComments: {request.comments}\n"
        result = DispatchResult()
        for email in admin_emails:
            result.merge(await self._send(email, subject, body))
        return result

    async def leave_decided(self, request: Any, user: Any) -> DispatchResult:
        status = LeaveStatus(request.status)
        subject = f"Your leave request has been {status.value}"
        body = (
            f"Hello {user.display_name},\n\n"
            f"Your {_type_label(request)} for {_describe_range(request)} "
            f"has been {status.value}.\n"
        )
        if status == LeaveStatus.rejected and request.decision_reason:
            body += f"\nReason: {request.decision_reason}\n"
        return await self._send(user.email, subject, body)

    async def leave_cancelled(
        self, request: Any, user: Any, admin_emails: Iterable[str],
    ) -> DispatchResult:
        """Confirm to the requester, then tell every admin the slot is free."""
        period = f"{_type_label(request)} for {_describe_range(request)}"
        result = await self._send(
            user.email,
            "Your leave request has been cancelled",
            f"Hello {user.display_name},\n\nYour {period} has been cancelled.\n",
        )
        subject = f"Leave request cancelled by {user.display_name}"
        body = f"{user.display_name} has cancelled their {period}.\n"
        for email in admin_emails:
            result.merge(await self._send(email, subject, body))
        return result

    # ── Bulk events ────────────────────────────────────────────────

    async def bulk_decided(
        self,
        requests: Sequence[Any],
        status: LeaveStatus,
        reason: Optional[str] = None,
    ) -> DispatchResult:
        """One email per affected user listing all of their decided requests.

        *requests* must have ``user`` loaded.
        """
        by_user: dict[Any, list[Any]] = defaultdict(list)
        users: dict[Any, Any] = {}
        for req in requests:
            by_user[req.user_id].append(req)
            users[req.user_id] = req.user

        result = DispatchResult()
        for user_id, user_requests in by_user.items():
            user = users[user_id]
            count = len(user_requests)
            noun = "request" if count == 1 else "requests"
            lines = "\n".join(
                f"  - {_type_label(r)}: {_describe_range(r)}" for r in user_requests
            )
            body = (
                f"Hello {user.display_name},\n\n"
                f"{count} leave {noun} of yours {'has' if count == 1 else 'have'} "
                f"been {status.value}:\n{lines}\n"
            )
            if reason:
                body += f"\nReason: {reason}\n"
            result.merge(
                await self._send(user.email, f"Leave {noun} {status.value}", body)
            )
        return result

    # ── TOIL ───────────────────────────────────────────────────────

    async def toil_entry_decided(self, entry: Any, user: Any) -> DispatchResult:
        if entry.approved:
            subject = "Your TOIL claim has been approved"
            body = (
                f"Hello {user.display_name},\n\n"
                f"{format_amount(entry.hours)} hour(s) of TOIL for "
                f"{entry.travel_date.isoformat()} have been added to your balance.\n"
            )
        else:
            subject = "Your TOIL claim has been rejected"
            body = (
                f"Hello {user.display_name},\n\n"
                f"Your TOIL claim for {entry.travel_date.isoformat()} was not approved.\n"
            )
            if entry.adjustment_reason:
                body += f"\nReason: {entry.adjustment_reason}\n"
        return await self._send(user.email, subject, body)


_notifier: Optional[Notifier] = None


def get_notifier() -> Notifier:
    """FastAPI dependency; tests override it with a recording sender."""
    global _notifier
    if _notifier is None:
        _notifier = Notifier(build_sender(settings))
    return _notifier
