# Overview: Best-effort notifications about request state transitions.

"""
Notifier

Notifications are fire-and-forget: they are dispatched only after the
transition's transaction has committed, and any failure (recipient lookup,
SMTP, formatting) is logged and swallowed. A notification problem never
affects the durability of a transition.

Backends (NOTIFIER_BACKEND):
- log:    write the event to the application logger
- smtp:   plain-text email via smtplib, delivered from a daemon thread
          (SMTP_SEND_IN_BACKGROUND=false sends inline)
- memory: keep events in a list (tests, local debugging)
"""

from __future__ import annotations

import enum
import smtplib
import threading
from dataclasses import dataclass, field
from email.message import EmailMessage
from email.utils import formatdate, make_msgid

from flask import current_app

from ..extensions import db
from ..models import ResourceRequest, RequestStatus, Role, User
from . import authority_service


EXTENSION_KEY = "infradesk_notifier"


class EventKind(str, enum.Enum):
    CREATED = "created"
    REJECTED = "rejected"
    ADVANCED = "advanced"
    ASSIGNED_TO_IT = "assigned_to_it"
    COMPLETED = "completed"


SUBJECTS = {
    EventKind.CREATED: "Resource request #{id} submitted",
    EventKind.REJECTED: "Resource request #{id} rejected",
    EventKind.ADVANCED: "Resource request #{id} awaiting level {next_level} approval",
    EventKind.ASSIGNED_TO_IT: "Resource request #{id} approved and assigned to IT",
    EventKind.COMPLETED: "Resource request #{id} completed",
}


@dataclass(frozen=True)
class NotificationEvent:
    kind: EventKind
    request_id: int
    recipients: tuple[str, ...]
    payload: dict = field(default_factory=dict)

    @property
    def subject(self) -> str:
        return SUBJECTS[self.kind].format(id=self.request_id, next_level=self.payload.get("next_level"))


class LogNotifier:
    def send(self, event: NotificationEvent) -> None:
        current_app.logger.info(
            "Notification %s for request %s to %s",
            event.kind.value, event.request_id, ", ".join(event.recipients) or "<nobody>",
        )


class MemoryNotifier:
    def __init__(self):
        self.events: list[NotificationEvent] = []

    def send(self, event: NotificationEvent) -> None:
        self.events.append(event)

    def clear(self) -> None:
        self.events.clear()

    def kinds(self) -> list[EventKind]:
        return [e.kind for e in self.events]


class SmtpNotifier:
    def __init__(
        self,
        *,
        host: str,
        port: int,
        sender: str,
        username: str | None = None,
        password: str | None = None,
        use_tls: bool = True,
        timeout: float = 10.0,
        background: bool = True,
    ):
        self.host = host
        self.port = port
        self.sender = sender
        self.username = username
        self.password = password
        self.use_tls = use_tls
        self.timeout = timeout
        self.background = background

    @classmethod
    def from_config(cls, config) -> "SmtpNotifier":
        return cls(
            host=config["SMTP_HOST"],
            port=config["SMTP_PORT"],
            sender=config["MAIL_FROM"],
            username=config.get("SMTP_USERNAME"),
            password=config.get("SMTP_PASSWORD"),
            use_tls=config.get("SMTP_USE_TLS", True),
            timeout=config.get("SMTP_TIMEOUT_SECONDS", 10.0),
            background=config.get("SMTP_SEND_IN_BACKGROUND", True),
        )

    def build_message(self, event: NotificationEvent) -> EmailMessage:
        msg = EmailMessage()
        msg["From"] = self.sender
        msg["To"] = ", ".join(event.recipients)
        msg["Subject"] = event.subject
        msg["Date"] = formatdate(localtime=True)
        msg["Message-ID"] = make_msgid(domain=None)
        msg.set_content(render_text(event))
        return msg

    def send(self, event: NotificationEvent) -> threading.Thread | None:
        """
        Email the event to its recipients.

        The message is built on the caller's thread. In background mode
        only the SMTP conversation (connect, STARTTLS, login, send) runs on
        a daemon thread, which is returned; a slow or unreachable relay
        never holds up the request that triggered the event, and delivery
        failures are logged from the worker.
        """
        if not event.recipients:
            return None
        msg = self.build_message(event)
        if not self.background:
            self.deliver(msg)
            return None

        app = current_app._get_current_object()
        worker = threading.Thread(
            target=self._deliver_in_background,
            args=(app, event, msg),
            name=f"smtp-notify-{event.request_id}",
            daemon=True,
        )
        worker.start()
        return worker

    def deliver(self, msg: EmailMessage) -> None:
        with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as smtp:
            if self.use_tls:
                smtp.starttls()
            if self.username:
                smtp.login(self.username, self.password or "")
            smtp.send_message(msg)

    def _deliver_in_background(self, app, event: NotificationEvent, msg: EmailMessage) -> None:
        try:
            self.deliver(msg)
        except Exception:
            app.logger.exception(
                "SMTP delivery of %s notification for request %s failed", event.kind.value, event.request_id
            )


NOTIFIER_BACKENDS = {
    "log": lambda config: LogNotifier(),
    "memory": lambda config: MemoryNotifier(),
    "smtp": SmtpNotifier.from_config,
}


def init_notifier(app) -> None:
    backend = (app.config.get("NOTIFIER_BACKEND") or "log").lower()
    if backend not in NOTIFIER_BACKENDS:
        raise ValueError(f"Unknown NOTIFIER_BACKEND '{backend}'. Must be one of: {', '.join(sorted(NOTIFIER_BACKENDS))}")
    app.extensions[EXTENSION_KEY] = NOTIFIER_BACKENDS[backend](app.config)


def get_notifier():
    return current_app.extensions[EXTENSION_KEY]


def render_text(event: NotificationEvent) -> str:
    p = event.payload
    lines = [
        event.subject,
        "",
        f"Project: {p.get('project')} / {p.get('phase')}",
        f"Resource: {p.get('resource')} x {p.get('requested_qty')}",
        f"Requested by: {p.get('requester')}",
        f"Status: {p.get('status')} (level {p.get('current_level')}/{p.get('required_levels')})",
    ]
    if p.get("actor"):
        lines.append(f"Action by: {p['actor']}")
    if p.get("comments"):
        lines.append(f"Comments: {p['comments']}")
    if p.get("completion_notes"):
        lines.append(f"Completion notes: {p['completion_notes']}")
    return "\n".join(lines) + "\n"


def _emails(users) -> tuple[str, ...]:
    seen = []
    for user in users:
        if user is not None and user.email and user.email not in seen:
            seen.append(user.email)
    return tuple(seen)


def recipients_for(kind: EventKind, request: ResourceRequest) -> tuple[str, ...]:
    if kind is EventKind.CREATED:
        if request.status == RequestStatus.APPROVED:
            return _emails([request.requester])
        return _emails(authority_service.approvers_for(1))
    if kind is EventKind.ADVANCED:
        return _emails(authority_service.approvers_for(request.next_required_level))
    if kind is EventKind.ASSIGNED_TO_IT:
        it_team = (
            db.session.query(User)
            .filter(User.role == Role.IT_TEAM, User.is_active.is_(True))
            .order_by(User.id.asc())
            .all()
        )
        return _emails([*it_team, request.requester])
    return _emails([request.requester])


def build_event(
    kind: EventKind,
    request: ResourceRequest,
    *,
    actor: User | None = None,
    comments: str | None = None,
) -> NotificationEvent:
    phase = request.phase
    payload = {
        "status": request.status.value,
        "current_level": request.current_level,
        "required_levels": request.required_levels,
        "next_level": request.next_required_level if kind is EventKind.ADVANCED else None,
        "requested_qty": request.requested_qty,
        "requested_config": request.requested_config,
        "justification": request.justification,
        "resource": request.resource_label,
        "phase": phase.name if phase else None,
        "project": phase.project.name if phase and phase.project else None,
        "requester": request.requester.display_name if request.requester else None,
        "actor": actor.display_name if actor else None,
        "comments": comments,
        "completion_notes": request.completion_notes if kind is EventKind.COMPLETED else None,
    }
    return NotificationEvent(
        kind=kind,
        request_id=request.id,
        recipients=recipients_for(kind, request),
        payload=payload,
    )


def dispatch(
    kind: EventKind,
    request_id: int,
    *,
    actor_id: int | None = None,
    comments: str | None = None,
) -> NotificationEvent | None:
    """
    Build and send a notification for a committed transition.

    Recipients and the message are resolved on the calling thread. With
    the smtp backend the SMTP conversation itself runs in the background,
    so the caller's response is not delayed by the mail relay; the log
    and memory backends complete inline.

    Never raises: failures are logged and the event is dropped.
    """
    try:
        request = db.session.get(ResourceRequest, request_id)
        if request is None:
            current_app.logger.warning("Notification %s skipped: request %s not found", kind.value, request_id)
            return None
        actor = db.session.get(User, actor_id) if actor_id is not None else None
        event = build_event(kind, request, actor=actor, comments=comments)
        get_notifier().send(event)
        return event
    except Exception:
        current_app.logger.exception("Failed to send %s notification for request %s", kind.value, request_id)
        return None
