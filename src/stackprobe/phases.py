"""
Scan phase state machine and the upgrade-only merge rules.

Each of the three phases moves along a small explicit transition table.
Terminal states never move again. The probe phase starts ``locked`` and
may only be unlocked once render has finished, successfully or not.

Merges return partial-update dicts keyed by ScanRecord attribute name,
suitable for ``store.update_scan_record(scan_id, partial)``.
"""
import logging
from dataclasses import replace
from typing import Any, Dict, FrozenSet, List, Mapping, Optional

from stackprobe.browser import detect_ai_from_network, detect_framework_from_hints
from stackprobe.evidence import build_evidence
from stackprobe.exceptions import PhaseTransitionError
from stackprobe.models import (
    CATEGORY_FIELDS,
    BrowserSignals,
    CategoryValue,
    Confidence,
    DetectionResult,
    PhaseStatus,
    ScanEvidence,
    ScanMode,
    ScanPhases,
    ScanRecord,
)
from stackprobe.scanner import pick_category_winners

logger = logging.getLogger(__name__)

P = PhaseStatus

TRANSITIONS: Mapping[str, Mapping[PhaseStatus, FrozenSet[PhaseStatus]]] = {
    "passive": {
        P.PENDING: frozenset({P.RUNNING}),
        P.RUNNING: frozenset({P.COMPLETE, P.FAILED}),
    },
    "render": {
        P.PENDING: frozenset({P.RUNNING, P.SKIPPED}),
        P.RUNNING: frozenset({P.COMPLETE, P.FAILED}),
    },
    "probe": {
        P.LOCKED: frozenset({P.PENDING}),
        P.PENDING: frozenset({P.RUNNING}),
        P.RUNNING: frozenset({P.COMPLETE, P.FAILED}),
    },
}

RENDER_FINISHED = frozenset({P.COMPLETE, P.FAILED})

TRANSPORT_SSE = "Server-Sent Events"
TRANSPORT_WEBSOCKET = "WebSocket"
TRANSPORT_HTTP = "HTTP (JSON)"


def can_transition(phase: str, current: PhaseStatus, target: PhaseStatus) -> bool:
    return target in TRANSITIONS[phase].get(current, frozenset())


def can_unlock_probe(phases: ScanPhases) -> bool:
    """Probe may leave ``locked`` only after render is complete or failed."""
    return phases.probe is P.LOCKED and phases.render in RENDER_FINISHED


def advance(phases: ScanPhases, phase: str, target: PhaseStatus) -> ScanPhases:
    """Return a copy of ``phases`` with ``phase`` moved to ``target``.

    Raises:
        PhaseTransitionError: If the move is not in the transition table, or
            it would unlock probe before render has finished
    """
    if phase not in TRANSITIONS:
        raise ValueError(f"Unknown scan phase: {phase}")
    current = getattr(phases, phase)
    if not can_transition(phase, current, target):
        raise PhaseTransitionError(phase, current.value, target.value)
    if phase == "probe" and current is P.LOCKED and not can_unlock_probe(phases):
        raise PhaseTransitionError(phase, current.value, target.value)
    return replace(phases, **{phase: target})


# ============================================================================
# Upgrade-only merge
# ============================================================================

def should_upgrade(incumbent: Optional[str], new_confidence: Optional[Confidence]) -> bool:
    """A later phase overwrites a value only if none is set or it is High confidence."""
    if new_confidence is None:
        return False
    return not incumbent or new_confidence is Confidence.HIGH


def improves(
    incumbent_value: Optional[str],
    incumbent_confidence: Optional[Confidence],
    new_value: Optional[str],
    new_confidence: Optional[Confidence],
) -> bool:
    """True when a later phase's finding should replace the stored one.

    The same value may be re-stated at a higher confidence; a different value
    must pass ``should_upgrade``.
    """
    if not new_value or new_confidence is None:
        return False
    if new_value == incumbent_value:
        current_rank = incumbent_confidence.rank if incumbent_confidence else 0
        return new_confidence.rank > current_rank
    return should_upgrade(incumbent_value, new_confidence)


def infer_transport(signals: BrowserSignals) -> Optional[str]:
    """How the page talks to its AI backend, judged from captured traffic."""
    if any("text/event-stream" in (r.content_type or "").lower() for r in signals.responses):
        return TRANSPORT_SSE
    if signals.websockets:
        return TRANSPORT_WEBSOCKET
    if any("application/json" in (r.content_type or "").lower() for r in signals.responses):
        return TRANSPORT_HTTP
    return None


def _render_evidence(
    record: ScanRecord,
    signals: BrowserSignals,
    winners: List[DetectionResult],
    detections: List[DetectionResult],
) -> ScanEvidence:
    page_domain = record.domain or ""
    evidence = build_evidence(
        winners=winners,
        detections=detections,
        script_srcs=signals.script_srcs,
        base_url=signals.final_url or record.url,
        page_domain=page_domain,
        extra_hosts=signals.domains,
    )
    evidence.network_domains = list(signals.domains)
    evidence.network_paths = list(signals.paths)
    evidence.websockets = list(signals.websockets)
    evidence.window_hints = [name for name, present in signals.window_hints.items() if present]
    return evidence


def merge_render_results(
    record: ScanRecord,
    signals: BrowserSignals,
    detections: Optional[List[DetectionResult]] = None,
    ai_detections: Optional[List[DetectionResult]] = None,
) -> Dict[str, Any]:
    """Fold render-phase signals into a partial update for ``record``.

    Args:
        record: Current stored record (passive results)
        signals: What the render capture observed
        detections: Technology catalogue re-scored against the rendered bundle
        ai_detections: AI catalogue re-scored against the rendered bundle

    Returns:
        Partial update: upgraded fields, merged evidence, scan_mode=render,
        render=complete and probe still locked
    """
    detections = detections or []
    ai_detections = ai_detections or []
    partial: Dict[str, Any] = {}

    winners = pick_category_winners(detections)

    hinted, hinted_confidence = detect_framework_from_hints(signals.window_hints)
    if hinted:
        candidate = CategoryValue(hinted, hinted_confidence)
    elif "framework" in winners:
        candidate = CategoryValue(winners["framework"].name, winners["framework"].confidence)
    else:
        candidate = None

    for name in CATEGORY_FIELDS:
        proposed = candidate if name == "framework" else (
            CategoryValue(winners[name].name, winners[name].confidence) if name in winners else None
        )
        if proposed is None:
            continue
        incumbent = record.category(name)
        if improves(incumbent.value, incumbent.confidence, proposed.value, proposed.confidence):
            logger.debug(f"Render upgrades {name}: {incumbent.value} -> {proposed.value}")
            partial[name] = proposed

    network_ai = detect_ai_from_network(signals)
    ai_winner = ai_detections[0] if ai_detections else None
    if network_ai.provider:
        ai_provider, ai_confidence = network_ai.provider, network_ai.confidence
    elif ai_winner is not None:
        ai_provider, ai_confidence = ai_winner.name, ai_winner.confidence
    else:
        ai_provider, ai_confidence = None, None

    ai = replace(record.ai)
    ai_changed = False
    if improves(record.ai.provider, record.ai.confidence, ai_provider, ai_confidence):
        ai.provider, ai.confidence = ai_provider, ai_confidence
        ai_changed = True
    # Observed traffic for the stored provider replaces a guessed transport
    if network_ai.provider and network_ai.provider == ai.provider:
        transport = infer_transport(signals)
        if transport and transport != ai.transport:
            ai.transport = transport
            ai_changed = True
    if network_ai.gateway:
        ai.gateway = network_ai.gateway
        ai_changed = True
    if ai_changed:
        partial["ai"] = ai

    rolled_up = list(winners.values())
    if ai_winner is not None:
        rolled_up.append(ai_winner)
    render_evidence = _render_evidence(record, signals, rolled_up, detections + ai_detections)
    partial["evidence"] = record.evidence.merged_with(render_evidence)

    partial["scan_mode"] = ScanMode.RENDER
    partial["scan_phases"] = replace(record.scan_phases, render=P.COMPLETE, probe=P.LOCKED)
    return partial


def merge_probe_results(record: ScanRecord, probe_result) -> Dict[str, Any]:
    """Fold an interaction probe into a partial update for ``record``.

    A provider read from the wire or from a known API host is High confidence
    and so always upgrades; a compatible-API path alone is Medium.
    TTFT, TPS and the inferred model are set whenever the probe measured
    a response. Probe ends complete, or failed when the probe reported an error.
    """
    partial: Dict[str, Any] = {}
    ai = replace(record.ai)
    ai_changed = False

    if probe_result.provider:
        compatible_only = probe_result.provider.endswith("-compatible") and not probe_result.payload_signatures
        confidence = Confidence.MEDIUM if compatible_only else Confidence.HIGH
        if improves(record.ai.provider, record.ai.confidence, probe_result.provider, confidence):
            ai.provider, ai.confidence = probe_result.provider, confidence
            ai_changed = True

    diagnostics = probe_result.diagnostics
    if diagnostics is not None:
        ai.ttft = diagnostics.ttft
        ai.tps = diagnostics.tps
        if probe_result.inferred_model:
            ai.inferred_model = probe_result.inferred_model
        ai_changed = True

    if ai_changed:
        partial["ai"] = ai

    probe_evidence = ScanEvidence(
        network_requests=list(probe_result.network_calls),
        payload_signatures=list(probe_result.payload_signatures),
        probe=diagnostics,
    )
    partial["evidence"] = record.evidence.merged_with(probe_evidence)
    if diagnostics is not None:
        partial["scan_mode"] = ScanMode.PROBE
    outcome = P.FAILED if probe_result.error else P.COMPLETE
    partial["scan_phases"] = replace(record.scan_phases, probe=outcome)
    return partial


def apply_partial(record: ScanRecord, partial: Mapping[str, Any]) -> ScanRecord:
    """Copy of ``record`` with a partial update applied."""
    return replace(record, **dict(partial))
