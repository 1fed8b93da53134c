"""Notification fan-out for lifecycle events.

A lifecycle event picks a template (title, message, banner kind, audience and
a display delay) and is delivered through two channels: an in-app banner that
auto-dismisses, streamed to SSE subscribers, and a best-effort push that only
goes out once push permission has been granted. Callers only notify after the
triggering state change has been persisted.
"""
from __future__ import annotations

import asyncio
import json
import time
import uuid
from dataclasses import dataclass, field
from typing import Callable, NamedTuple, Optional

import httpx
import structlog
from structlog.contextvars import get_contextvars

import schemas
from schemas import Audience, BannerKind
from settings import Settings, get_settings

logger = structlog.get_logger(__name__)


class Template(NamedTuple):
    title: str
    render: Callable[..., str]
    kind: BannerKind
    audience: Audience
    delay: float  # seconds, before scaling


TEMPLATES: dict[str, Template] = {
    "job_posted": Template(
        "New Haul Alert 🚚",
        lambda job, **_: f"A new {job.vehicle_type.value} job was just posted nearby: {job.title}",
        BannerKind.ALERT,
        Audience.DRIVER,
        1.5,
    ),
    "job_accepted": Template(
        "Driver Found! 🎉",
        lambda job, **_: f"A driver has accepted your request for: {job.title}. They are on their way.",
        BannerKind.SUCCESS,
        Audience.REQUESTER,
        1.0,
    ),
    "driver_confirmed": Template(
        "Delivery Update 📦",
        lambda job, **_: f"Driver has arrived for {job.title}. Please confirm receipt in your profile to release funds.",
        BannerKind.ALERT,
        Audience.REQUESTER,
        0.5,
    ),
    "driver_completed": Template(
        "Delivery Complete ✅",
        lambda job, **_: f"Escrow released! {job.title} has been successfully delivered and confirmed by both parties.",
        BannerKind.SUCCESS,
        Audience.REQUESTER,
        0.5,
    ),
    "requester_confirmed": Template(
        "Customer Confirmed ✅",
        lambda job, **_: f"Customer has confirmed receipt of {job.title}. Waiting for your delivery confirmation.",
        BannerKind.INFO,
        Audience.DRIVER,
        0.5,
    ),
    "requester_completed": Template(
        "Payment Released 💰",
        lambda job, **_: f"Customer confirmed receipt of {job.title}. Funds have been transferred to your wallet.",
        BannerKind.SUCCESS,
        Audience.DRIVER,
        0.5,
    ),
    "rating_submitted": Template(
        "Rating Submitted ⭐",
        lambda **_: "Thanks for your feedback!",
        BannerKind.SUCCESS,
        Audience.USER,
        0,
    ),
    "signed_in": Template(
        "Welcome back!",
        lambda user, **_: f"Signed in as {user.name}",
        BannerKind.SUCCESS,
        Audience.USER,
        0,
    ),
    "signed_out": Template(
        "Signed out",
        lambda **_: "You have been successfully logged out.",
        BannerKind.INFO,
        Audience.USER,
        0,
    ),
    "went_online": Template(
        "You are now online 🟢",
        lambda **_: "You will be notified of new jobs nearby.",
        BannerKind.SUCCESS,
        Audience.USER,
        0,
    ),
    "went_offline": Template(
        "You are offline 🔴",
        lambda **_: "You won't receive new job alerts.",
        BannerKind.INFO,
        Audience.USER,
        0,
    ),
}


@dataclass
class Notification:
    event: str
    title: str
    message: str
    kind: BannerKind
    audience: Audience
    # None broadcasts to everyone; an empty list reaches nobody
    recipient_ids: Optional[list[Optional[str]]] = None
    delay: float = 0.0
    context: dict = field(default_factory=dict)


class BannerBoard:
    """Transient in-app banners; each one disappears after its dismiss window."""

    def __init__(self, dismiss_after: float, clock: Callable[[], float] = time.time):
        self.dismiss_after = dismiss_after
        self._clock = clock
        self._banners: dict[str, schemas.Banner] = {}

    def post(self, banner: schemas.Banner) -> schemas.Banner:
        self._prune()
        self._banners[banner.id] = banner
        return banner

    def dismiss(self, banner_id: str) -> bool:
        return self._banners.pop(banner_id, None) is not None

    def __len__(self) -> int:
        return len(self._banners)

    def _prune(self) -> None:
        now_ms = int(self._clock() * 1000)
        expired = [
            banner_id
            for banner_id, banner in self._banners.items()
            if now_ms - banner.created_at >= banner.dismiss_after_seconds * 1000
        ]
        for banner_id in expired:
            del self._banners[banner_id]

    def active(self, user_id: Optional[str] = None) -> list[schemas.Banner]:
        self._prune()
        return [
            banner
            for banner in self._banners.values()
            if banner.recipient_id is None or banner.recipient_id == user_id
        ]


# --- SSE Connection Manager (Simple In-Memory) --- #
class ConnectionManager:
    def __init__(self):
        # subscription id -> (user id or None for anonymous viewers, queue)
        self.active_connections: dict[str, tuple[Optional[str], asyncio.Queue]] = {}

    def connect(self, user_id: Optional[str]) -> tuple[str, asyncio.Queue]:
        """Registers a new subscriber and returns its id and queue."""
        subscription_id = uuid.uuid4().hex
        queue: asyncio.Queue = asyncio.Queue()
        self.active_connections[subscription_id] = (user_id, queue)
        logger.info("SSE connection established", user_id=user_id, subscription_id=subscription_id)
        return subscription_id, queue

    def disconnect(self, subscription_id: str) -> None:
        if self.active_connections.pop(subscription_id, None) is not None:
            logger.info("SSE connection closed", subscription_id=subscription_id)

    async def send_banner(self, banner: schemas.Banner, event: str = "banner") -> int:
        payload = banner.model_dump(by_alias=True, mode="json")
        req_id = get_contextvars().get("request_id")
        if req_id:
            payload["requestId"] = req_id
        data = json.dumps(payload)

        delivered = 0
        for user_id, queue in list(self.active_connections.values()):
            if banner.recipient_id is not None and banner.recipient_id != user_id:
                continue
            await queue.put({"event": event, "data": data})
            delivered += 1
        logger.info("Sent SSE event", sse_event=event, banner_id=banner.id, subscribers=delivered)
        return delivered


class PushPermission:
    DEFAULT = "default"
    GRANTED = "granted"
    DENIED = "denied"


class PushChannel:
    """Platform push over an ntfy-style HTTP endpoint (`POST {base}/{topic}`)."""

    def __init__(self, settings: Settings, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.base_url = (settings.push_base_url or "").rstrip("/")
        self.topic = settings.push_topic
        self.auth = settings.push_auth
        self.permission = PushPermission.DEFAULT
        self._transport = transport

    @property
    def configured(self) -> bool:
        return bool(self.base_url)

    def request_permission(self) -> str:
        """Prompt once; an already granted or denied permission is left alone."""
        if self.permission == PushPermission.DEFAULT:
            self.permission = PushPermission.GRANTED if self.configured else PushPermission.DENIED
            logger.info("Push permission decided", permission=self.permission)
        return self.permission

    def topic_for(self, recipient_id: Optional[str]) -> str:
        return f"{self.topic}-{recipient_id}" if recipient_id else self.topic

    async def send(self, title: str, message: str, recipient_id: Optional[str]) -> bool:
        if self.permission != PushPermission.GRANTED or not self.configured:
            return False

        headers = {"Title": title.encode("utf-8")}
        if self.auth:
            headers["Authorization"] = self.auth
        url = f"{self.base_url}/{self.topic_for(recipient_id)}"
        try:
            async with httpx.AsyncClient(timeout=10.0, transport=self._transport) as client:
                resp = await client.post(url, headers=headers, content=message.encode("utf-8"))
            resp.raise_for_status()
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            logger.warning("Push delivery failed", url=url, error=str(exc))
            return False
        return True


class Notifier:
    def __init__(
        self,
        settings: Optional[Settings] = None,
        manager: Optional[ConnectionManager] = None,
        push: Optional[PushChannel] = None,
        clock: Callable[[], float] = time.time,
    ):
        settings = settings or get_settings()
        self.delay_scale = settings.notification_delay_scale
        self.board = BannerBoard(settings.banner_dismiss_seconds, clock=clock)
        self.manager = manager or ConnectionManager()
        self.push = push or PushChannel(settings)
        self._clock = clock
        self._pending: set[asyncio.Task] = set()

    def build(self, event: str, recipient_ids: Optional[list] = None, **context) -> Notification:
        template = TEMPLATES[event]
        return Notification(
            event=event,
            title=template.title,
            message=template.render(**context),
            kind=template.kind,
            audience=template.audience,
            recipient_ids=recipient_ids,
            delay=template.delay * self.delay_scale,
            context=context,
        )

    async def notify(self, event: str, recipient_ids: Optional[list] = None, **context) -> Notification:
        """Dispatch a templated notification now, or after its delay in the background."""
        notification = self.build(event, recipient_ids=recipient_ids, **context)
        if notification.delay <= 0:
            await self.dispatch(notification)
        else:
            task = asyncio.create_task(self._dispatch_later(notification))
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)
        return notification

    async def alert(self, title: str, message: str, recipient_id: Optional[str] = None) -> None:
        """Immediate alert banner, used for errors surfaced to the user."""
        await self.dispatch(
            Notification(
                event="error",
                title=title,
                message=message,
                kind=BannerKind.ALERT,
                audience=Audience.USER,
                recipient_ids=[recipient_id] if recipient_id else None,
            )
        )

    async def _dispatch_later(self, notification: Notification) -> None:
        await asyncio.sleep(notification.delay)
        await self.dispatch(notification)

    async def dispatch(self, notification: Notification) -> list[schemas.Banner]:
        recipients = [None] if notification.recipient_ids is None else notification.recipient_ids
        banners = []
        for recipient_id in recipients:
            banner = schemas.Banner(
                id=uuid.uuid4().hex,
                title=notification.title,
                message=notification.message,
                kind=notification.kind,
                audience=notification.audience,
                recipient_id=recipient_id,
                created_at=int(self._clock() * 1000),
                dismiss_after_seconds=self.board.dismiss_after,
            )
            self.board.post(banner)
            await self.manager.send_banner(banner)
            await self.push.send(notification.title, notification.message, recipient_id)
            banners.append(banner)
        logger.info(
            "Notification dispatched",
            notification_event=notification.event,
            audience=notification.audience.value,
            recipients=len(banners),
        )
        return banners

    async def drain(self) -> None:
        """Wait for every delayed notification that is still scheduled."""
        while self._pending:
            await asyncio.gather(*list(self._pending))
