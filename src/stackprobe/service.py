"""
Scan service: the trigger surface over the scan pipeline.

    service = ScanService(get_db_client())
    scan_id = await service.start_scan("example.com")   # passive now, render in background
    record = service.get_scan(scan_id)                  # poll until record.scan_phases.settled
    await service.start_probe(scan_id)                  # once render has finished

Passive scans run inline; render and probe run as background jobs keyed by
scan id. Every write goes through the store as a partial update.
"""
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional

from stackprobe.browser import render_capture
from stackprobe.browser_config import BrowserConfig, RENDER_CONFIG
from stackprobe.config import ScanConfig, default_config
from stackprobe.database import AbstractScanStore
from stackprobe.exceptions import (
    ProbeAlreadyRunningError,
    ProbeLockedError,
    ScanNotFoundError,
    StackProbeError,
)
from stackprobe.extractor import bundle_from_browser
from stackprobe.jobs import JobTracker
from stackprobe.matcher import rank_signatures
from stackprobe.models import BrowserSignals, PhaseStatus, ScanRecord
from stackprobe.phases import advance, can_unlock_probe, merge_probe_results, merge_render_results
from stackprobe.probe import InteractionProbe
from stackprobe.scanner import PassiveScanner

logger = logging.getLogger(__name__)

RenderCollector = Callable[[str], Awaitable[BrowserSignals]]


def render_job_key(scan_id: str) -> str:
    return f"render:{scan_id}"


def probe_job_key(scan_id: str) -> str:
    return f"probe:{scan_id}"


class ScanService:
    """
    Orchestrates passive, render and probe phases against a store.

    Args:
        store: Persistence store (failures propagate as StorageError)
        scanner: Passive scanner
        render_collector: Async callable url -> BrowserSignals (launches its own browser)
        probe: Interaction probe
        tracker: Background job registry
        config: Scan tunables
    """

    def __init__(
        self,
        store: AbstractScanStore,
        scanner: Optional[PassiveScanner] = None,
        render_collector: Optional[RenderCollector] = None,
        probe: Optional[InteractionProbe] = None,
        tracker: Optional[JobTracker] = None,
        config: Optional[ScanConfig] = None,
        browser_config: Optional[BrowserConfig] = None,
    ):
        self.store = store
        self.config = config or default_config
        self.scanner = scanner or PassiveScanner(self.config)
        self.browser_config = browser_config or RENDER_CONFIG
        self.render_collector = render_collector or (lambda url: render_capture(url, self.browser_config))
        self.probe = probe or InteractionProbe(self.config)
        self.tracker = tracker or JobTracker()

    # --- Reads ---

    def get_scan(self, scan_id: str) -> ScanRecord:
        """Fetch a record.

        Raises:
            ScanNotFoundError: If no record has that id
        """
        record = self.store.get_scan_record(scan_id)
        if record is None:
            raise ScanNotFoundError(scan_id)
        return record

    def list_recent(self, limit: int = 20) -> List[ScanRecord]:
        return self.store.list_recent_scans(limit)

    def list_for_user(self, user_id: str, limit: int = 20) -> List[ScanRecord]:
        return self.store.list_scans_for_user(user_id, limit)

    # --- Passive + render ---

    async def start_scan(self, url: str, user_id: Optional[str] = None, render: bool = True) -> str:
        """Run the passive scan, persist it and schedule the render phase.

        Returns:
            The new scan id

        Raises:
            InvalidURLError: If the URL is missing or blank
            StorageError: If the record cannot be stored
        """
        record = await self.scanner.scan(url, user_id=user_id)
        stored = self.store.create_scan_record(record)
        logger.info(f"Scan {stored.id} stored for {stored.domain}")

        if render:
            self.tracker.submit(render_job_key(stored.id), self.run_render(stored.id))
        else:
            phases = advance(stored.scan_phases, "render", PhaseStatus.SKIPPED)
            self.store.update_scan_record(stored.id, {"scan_phases": phases})
        return stored.id

    async def run_render(self, scan_id: str) -> ScanRecord:
        """Render the page, merge what it shows and mark render complete or failed."""
        record = self.get_scan(scan_id)
        record = self.store.update_scan_record(
            scan_id, {"scan_phases": advance(record.scan_phases, "render", PhaseStatus.RUNNING)}
        )

        try:
            signals = await self.render_collector(record.url)
            current = self.get_scan(scan_id)

            if signals.error or signals.empty:
                logger.warning(f"Render produced no signals for scan {scan_id}: {signals.error}")
                return self._finish_render(scan_id, current, {}, PhaseStatus.FAILED)

            bundle = bundle_from_browser(signals)
            detections = rank_signatures(self.scanner.signatures, bundle)
            ai_detections = rank_signatures(self.scanner.ai_signatures, bundle)
            partial = merge_render_results(current, signals, detections, ai_detections)
            return self._finish_render(scan_id, current, partial, PhaseStatus.COMPLETE)

        except StackProbeError:
            raise
        except Exception as e:
            logger.error(f"Render merge failed for scan {scan_id}: {e}")
            return self._finish_render(scan_id, self.get_scan(scan_id), {}, PhaseStatus.FAILED)

    def _finish_render(
        self, scan_id: str, current: ScanRecord, partial: Dict[str, Any], outcome: PhaseStatus
    ) -> ScanRecord:
        partial = dict(partial)
        partial["scan_phases"] = advance(current.scan_phases, "render", outcome)
        updated = self.store.update_scan_record(scan_id, partial)
        logger.info(f"Render {outcome.value} for scan {scan_id}")
        return updated

    # --- Probe ---

    async def start_probe(self, scan_id: str) -> Dict[str, Any]:
        """Unlock and schedule the interaction probe.

        Raises:
            ScanNotFoundError: If no record has that id
            ProbeAlreadyRunningError: If a probe is pending or running for the scan
            ProbeLockedError: If render has not finished yet
            PhaseTransitionError: If the probe already finished
        """
        record = self.get_scan(scan_id)
        phases = record.scan_phases

        if self.tracker.is_running(probe_job_key(scan_id)) or phases.probe in (
            PhaseStatus.PENDING, PhaseStatus.RUNNING
        ):
            raise ProbeAlreadyRunningError(scan_id)
        if phases.probe is PhaseStatus.LOCKED and not can_unlock_probe(phases):
            raise ProbeLockedError(scan_id, phases.render.value)

        self.store.update_scan_record(scan_id, {"scan_phases": advance(phases, "probe", PhaseStatus.PENDING)})
        self.tracker.submit(probe_job_key(scan_id), self.run_probe(scan_id))
        logger.info(f"Probe scheduled for scan {scan_id}")
        return {"scanId": scan_id, "probe": PhaseStatus.PENDING.value}

    async def run_probe(self, scan_id: str) -> ScanRecord:
        """Run the interaction probe and merge its findings."""
        record = self.get_scan(scan_id)
        record = self.store.update_scan_record(
            scan_id, {"scan_phases": advance(record.scan_phases, "probe", PhaseStatus.RUNNING)}
        )

        result = await self.probe.run(record.url)
        current = self.get_scan(scan_id)
        try:
            partial = merge_probe_results(current, result)
            outcome = PhaseStatus.FAILED if result.error else PhaseStatus.COMPLETE
        except Exception as e:
            logger.error(f"Probe merge failed for scan {scan_id}: {e}")
            partial, outcome = {}, PhaseStatus.FAILED
        partial["scan_phases"] = advance(current.scan_phases, "probe", outcome)
        updated = self.store.update_scan_record(scan_id, partial)
        logger.info(f"Probe {outcome.value} for scan {scan_id}")
        return updated

    # --- Convenience ---

    async def scan(self, url: str, user_id: Optional[str] = None, render: bool = True,
                   probe: bool = False) -> ScanRecord:
        """Run the requested phases to completion and return the final record."""
        scan_id = await self.start_scan(url, user_id=user_id, render=render)
        if render:
            await self.tracker.wait(render_job_key(scan_id))
            if probe:
                await self.start_probe(scan_id)
                await self.tracker.wait(probe_job_key(scan_id))
        return self.get_scan(scan_id)

    async def close(self) -> None:
        await self.tracker.shutdown()
