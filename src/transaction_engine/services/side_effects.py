"""Fire-and-forget side effects: activity feed, notifications, email.

Condition and step mutations are strictly transactional; these effects are
best-effort. Each one runs as a detached asyncio task, is retried with
tenacity, and a final failure only produces a log entry. Nothing here ever
raises into the caller.

Effects collected during an operation are released by the session's
``after_commit`` event, so a rolled-back unit of work emits nothing.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from functools import lru_cache
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from sqlalchemy import event
from tenacity import AsyncRetrying, stop_after_attempt, wait_exponential

from transaction_engine.config import get_settings
from transaction_engine.logging_config import get_logger

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from transaction_engine.domain.rule_protocol import ActivityEntry

logger = get_logger(__name__)

_PENDING_KEY = "transaction_engine.side_effects"
_LISTENING_KEY = "transaction_engine.side_effects.listening"


# ---------------------------------------------------------------------------
# Messages
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class NotificationMessage:
    """In-app notification for one user."""

    user_id: int
    transaction_id: int
    type: str
    title: str
    link: str | None = None
    severity: str = "info"


@dataclass(frozen=True)
class EmailMessage:
    """Templated email, rendered by the sender in ``locale``."""

    template: str
    locale: str
    to: str
    context: dict = field(default_factory=dict)


@dataclass(frozen=True)
class SideEffect:
    name: str
    run: Callable[[], Awaitable[None]]
    context: dict = field(default_factory=dict)


# ---------------------------------------------------------------------------
# Collaborator protocols and logging defaults
# ---------------------------------------------------------------------------


@runtime_checkable
class ActivityFeed(Protocol):
    async def log(
        self, transaction_id: int, actor_id: int | None, activity_type: str, metadata: dict
    ) -> None: ...


@runtime_checkable
class Notifier(Protocol):
    async def notify(self, message: NotificationMessage) -> None: ...


@runtime_checkable
class EmailSender(Protocol):
    async def send(self, template: str, locale: str, to: str, context: dict) -> None: ...


class LoggingActivityFeed:
    async def log(
        self, transaction_id: int, actor_id: int | None, activity_type: str, metadata: dict
    ) -> None:
        logger.info(
            "activity.logged",
            transaction_id=transaction_id,
            actor_id=actor_id,
            activity_type=str(activity_type),
            metadata=metadata,
        )


class LoggingNotifier:
    async def notify(self, message: NotificationMessage) -> None:
        logger.info(
            "notification.sent",
            user_id=message.user_id,
            transaction_id=message.transaction_id,
            type=message.type,
            severity=message.severity,
        )


class LoggingEmailSender:
    async def send(self, template: str, locale: str, to: str, context: dict) -> None:
        logger.info("email.sent", template=template, locale=locale, to=to)


# ---------------------------------------------------------------------------
# Dispatcher
# ---------------------------------------------------------------------------


class SideEffectDispatcher:
    """Runs side effects as bounded, retried, detached tasks."""

    def __init__(
        self,
        activity_feed: ActivityFeed | None = None,
        notifier: Notifier | None = None,
        email_sender: EmailSender | None = None,
        max_attempts: int = 3,
        max_pending: int = 100,
        wait_multiplier: float = 0.5,
        wait_max: float = 5.0,
    ) -> None:
        self.activity_feed = activity_feed or LoggingActivityFeed()
        self.notifier = notifier or LoggingNotifier()
        self.email_sender = email_sender or LoggingEmailSender()
        self._max_attempts = max_attempts
        self._max_pending = max_pending
        self._wait_multiplier = wait_multiplier
        self._wait_max = wait_max
        self._tasks: set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    # --- Effect builders ---

    def activity(self, entry: ActivityEntry) -> SideEffect:
        async def run() -> None:
            await self.activity_feed.log(
                entry.transaction_id, entry.actor_id, str(entry.activity_type), entry.metadata
            )

        return SideEffect(
            name="activity",
            run=run,
            context={
                "transaction_id": entry.transaction_id,
                "activity_type": str(entry.activity_type),
            },
        )

    def notification(self, message: NotificationMessage) -> SideEffect:
        async def run() -> None:
            await self.notifier.notify(message)

        return SideEffect(
            name="notification",
            run=run,
            context={"transaction_id": message.transaction_id, "type": message.type},
        )

    def email(self, message: EmailMessage) -> SideEffect:
        async def run() -> None:
            await self.email_sender.send(
                message.template, message.locale, message.to, message.context
            )

        return SideEffect(
            name="email",
            run=run,
            context={"template": message.template, "to": message.to},
        )

    # --- Submission ---

    def submit(self, effect: SideEffect) -> None:
        """Schedule an effect now. Never blocks, never raises."""
        if len(self._tasks) >= self._max_pending:
            logger.warning("side_effect.dropped", effect=effect.name, pending=len(self._tasks))
            return
        task = asyncio.get_running_loop().create_task(self._run(effect))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def submit_after_commit(self, session: AsyncSession, effects: list[SideEffect]) -> None:
        """Queue effects on the session; they are scheduled once it commits."""
        if not effects:
            return
        sync_session = session.sync_session
        if not sync_session.info.get(_LISTENING_KEY):
            event.listen(sync_session, "after_commit", self._release)
            event.listen(sync_session, "after_rollback", self._discard)
            sync_session.info[_LISTENING_KEY] = True
        sync_session.info.setdefault(_PENDING_KEY, []).extend(effects)

    def _release(self, sync_session) -> None:
        for effect in sync_session.info.pop(_PENDING_KEY, []):
            self.submit(effect)

    def _discard(self, sync_session) -> None:
        effects = sync_session.info.pop(_PENDING_KEY, [])
        if effects:
            logger.info("side_effect.discarded", count=len(effects))

    async def _run(self, effect: SideEffect) -> None:
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self._max_attempts),
                wait=wait_exponential(multiplier=self._wait_multiplier, max=self._wait_max),
                reraise=True,
            ):
                with attempt:
                    await effect.run()
        except Exception as exc:
            logger.error(
                "side_effect.failed",
                effect=effect.name,
                attempts=self._max_attempts,
                error=str(exc),
                **effect.context,
            )

    async def drain(self) -> None:
        """Wait for every in-flight effect. Used at shutdown and in tests."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)


@lru_cache(maxsize=1)
def get_side_effect_dispatcher() -> SideEffectDispatcher:
    """Return the process-wide dispatcher built from the settings."""
    settings = get_settings()
    return SideEffectDispatcher(
        max_attempts=settings.side_effect_max_attempts,
        max_pending=settings.side_effect_max_pending,
    )
