"""
Post-commit event delivery.

Operations collect events in an outbox while their transaction is open and
hand the list to ``EventDispatcher.publish`` only after commit. Delivery is
best-effort: a notifier that raises is logged and skipped, and the auction
state that triggered the event is never touched again.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Iterable, List, Optional, Sequence

from gavel.core import Notifier
from gavel.settings import NotificationCfg

log = logging.getLogger("gavel.notify")


class LoggingNotifier:
    """Default collaborator: writes every event to the log."""

    def handle(self, event) -> None:
        log.info("event %s %s", event.kind, getattr(event, "auction_id", "-"))


class EventDispatcher:
    def __init__(
        self,
        notifiers: Optional[Sequence[Notifier]] = None,
        cfg: Optional[NotificationCfg] = None,
    ):
        cfg = cfg or NotificationCfg()
        self.notifiers: List[Notifier] = list(notifiers or [LoggingNotifier()])
        self.inline = cfg.inline
        self._pool: Optional[ThreadPoolExecutor] = None
        if not self.inline:
            self._pool = ThreadPoolExecutor(
                max_workers=cfg.workers, thread_name_prefix="gavel-notify"
            )

    def subscribe(self, notifier: Notifier) -> None:
        self.notifiers.append(notifier)

    def publish(self, events: Iterable[object]) -> None:
        """Fire and forget. Never raises."""
        for event in events:
            for notifier in list(self.notifiers):
                if self._pool is None:
                    self._deliver(notifier, event)
                    continue
                try:
                    self._pool.submit(self._deliver, notifier, event)
                except RuntimeError:
                    # pool already shut down
                    log.warning("dropping %s: dispatcher closed", event.kind)

    @staticmethod
    def _deliver(notifier: Notifier, event) -> None:
        try:
            notifier.handle(event)
        except Exception:
            log.exception(
                "notifier %s failed on %s for auction %s",
                type(notifier).__name__,
                getattr(event, "kind", type(event).__name__),
                getattr(event, "auction_id", "-"),
            )

    def close(self, wait: bool = True) -> None:
        if self._pool is not None:
            self._pool.shutdown(wait=wait)
