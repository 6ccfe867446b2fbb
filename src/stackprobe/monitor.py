"""
Background rescans of tracked domains and stack change detection.

RescanWorker periodically re-runs the passive scan for every active
subscription that has not been scanned within the rescan window, diffs the
result against the previous scan of that domain and records a ChangeEvent
when anything moved. Delivery of notifications is delegated to a Notifier.
"""
import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import replace
from datetime import datetime, timedelta
from typing import List, Optional

from stackprobe.config import ScanConfig, default_config
from stackprobe.database import AbstractScanStore
from stackprobe.models import (
    CATEGORY_FIELDS,
    ChangeEvent,
    ChangeSet,
    FieldChange,
    PhaseStatus,
    ScanPhases,
    ScanRecord,
    Subscription,
)
from stackprobe.scanner import PassiveScanner, normalize_domain

logger = logging.getLogger(__name__)

CHANGE_TYPE_STACK = "stack_change"


def _tracked_values(record: ScanRecord) -> List[tuple]:
    values = [(name, record.category(name).value) for name in CATEGORY_FIELDS]
    values.append(("aiProvider", record.ai.provider))
    return values


def detect_changes(old: Optional[ScanRecord], new: ScanRecord) -> ChangeSet:
    """Diff the category fields and AI provider of two scans.

    A field is added when it was empty and is now set, removed when it was
    set and is now empty, and modified when both are set but differ. With
    no previous scan nothing is reported.
    """
    changes = ChangeSet()
    if old is None:
        return changes

    for (field_name, old_value), (_, new_value) in zip(_tracked_values(old), _tracked_values(new)):
        if not old_value and new_value:
            changes.added.append(f"{field_name}: {new_value}")
        elif old_value and not new_value:
            changes.removed.append(f"{field_name}: {old_value}")
        elif old_value and new_value and old_value != new_value:
            changes.modified.append(FieldChange(tech=field_name, from_value=old_value, to_value=new_value))
    return changes


def summarize_changes(changes: ChangeSet) -> str:
    """One-line human summary, e.g. "Added: auth: Clerk; Changed framework: React → Next.js"."""
    parts = [f"Added: {item}" for item in changes.added]
    parts += [f"Removed: {item}" for item in changes.removed]
    parts += [f"Changed {m.tech}: {m.from_value} → {m.to_value}" for m in changes.modified]
    return "; ".join(parts)


class Notifier(ABC):
    """Hands a change notification to whatever delivers it (email, webhook...)."""

    @abstractmethod
    async def notify(self, subscription: Subscription, event: ChangeEvent) -> bool:
        """Request delivery. Returns True when the notification was handed off."""
        pass


class LoggingNotifier(Notifier):
    """Default notifier: logs the change and reports it as not delivered."""

    async def notify(self, subscription: Subscription, event: ChangeEvent) -> bool:
        logger.info(f"Stack change on {subscription.domain}: {event.change_summary}")
        return False


class RescanWorker:
    """
    Periodic passive rescans of subscribed domains.

    Args:
        store: Persistence store
        scanner: Passive scanner used for rescans
        notifier: Notification hand-off (LoggingNotifier by default)
        config: Window, interval and throttle settings
    """

    def __init__(
        self,
        store: AbstractScanStore,
        scanner: Optional[PassiveScanner] = None,
        notifier: Optional[Notifier] = None,
        config: Optional[ScanConfig] = None,
    ):
        self.store = store
        self.config = config or default_config
        self.scanner = scanner or PassiveScanner(self.config)
        self.notifier = notifier or LoggingNotifier()
        self._running = False

    def due_subscriptions(self, now: Optional[datetime] = None) -> List[Subscription]:
        """Active subscriptions not rescanned within the rescan window."""
        now = now or datetime.now()
        cutoff = now - timedelta(hours=self.config.rescan_window_hours)
        return [
            sub for sub in self.store.list_subscriptions(active_only=True)
            if sub.last_scanned_at is None or sub.last_scanned_at < cutoff
        ]

    async def rescan(self, subscription: Subscription) -> Optional[ChangeEvent]:
        """Rescan one subscription, record any change and update its timestamp.

        Returns:
            The stored ChangeEvent, or None when nothing changed
        """
        logger.info(f"Re-scanning subscription: {subscription.domain}")

        record = await self.scanner.scan(subscription.url, user_id=subscription.user_id)
        record = replace(
            record,
            domain=normalize_domain(record.url),
            scan_phases=ScanPhases(
                passive=PhaseStatus.COMPLETE,
                render=PhaseStatus.SKIPPED,
                probe=PhaseStatus.LOCKED,
            ),
        )

        previous = self.store.get_latest_scan_record_by_domain(subscription.domain)
        saved = self.store.create_scan_record(record)

        changes = detect_changes(previous, saved)
        event = None
        if changes.has_changes:
            event = self.store.create_change_event(ChangeEvent(
                subscription_id=subscription.id,
                old_scan_id=previous.id if previous else None,
                new_scan_id=saved.id,
                change_type=CHANGE_TYPE_STACK,
                change_summary=summarize_changes(changes),
                changes=changes,
            ))
            logger.info(f"Changes detected for {subscription.domain}: {event.change_summary}")

            if subscription.notify_on_change:
                try:
                    delivered = await self.notifier.notify(subscription, event)
                except Exception as e:
                    logger.error(f"Notification failed for {subscription.domain}: {e}")
                    delivered = False
                if delivered:
                    self.store.mark_change_notified(event.id)

        self.store.update_subscription(
            subscription.id,
            last_scanned_at=datetime.now(),
            last_scan_id=saved.id,
        )
        logger.info(f"Completed re-scan for {subscription.domain}")
        return event

    async def run_cycle(self) -> List[ChangeEvent]:
        """Rescan every due subscription once, pausing between them."""
        due = self.due_subscriptions()
        logger.info(f"Rescan cycle: {len(due)} subscription(s) due")

        events: List[ChangeEvent] = []
        for index, subscription in enumerate(due):
            if index:
                await asyncio.sleep(self.config.rescan_delay_seconds)
            try:
                event = await self.rescan(subscription)
            except Exception as e:
                logger.error(f"Error re-scanning {subscription.domain}: {e}")
                continue
            if event is not None:
                events.append(event)

        logger.info(f"Rescan cycle complete: {len(events)} change event(s)")
        return events

    async def run_forever(self) -> None:
        """Wait the initial delay, then run a cycle every interval until stopped."""
        self._running = True
        logger.info(
            f"Rescan worker started (first cycle in {self.config.worker_initial_delay_seconds}s, "
            f"then every {self.config.worker_interval_seconds}s)"
        )
        try:
            await asyncio.sleep(self.config.worker_initial_delay_seconds)
            while self._running:
                try:
                    await self.run_cycle()
                except Exception as e:
                    logger.error(f"Rescan cycle error: {e}")
                await asyncio.sleep(self.config.worker_interval_seconds)
        except asyncio.CancelledError:
            logger.info("Rescan worker cancelled")
            raise
        finally:
            self._running = False

    def stop(self) -> None:
        self._running = False
