# tests/test_phases.py
import pytest

from stackprobe.exceptions import PhaseTransitionError
from stackprobe.models import (
    AIFields,
    BrowserSignals,
    Category,
    CategoryValue,
    Confidence,
    DetectionResult,
    EvidenceReceipt,
    PhaseStatus,
    ProbeDiagnostics,
    RuleType,
    ScanEvidence,
    ScanMode,
    ScanPhases,
    ScanRecord,
)
from stackprobe.phases import (
    TRANSPORT_HTTP,
    TRANSPORT_SSE,
    TRANSPORT_WEBSOCKET,
    advance,
    apply_partial,
    can_unlock_probe,
    improves,
    infer_transport,
    merge_probe_results,
    merge_render_results,
    should_upgrade,
)
from stackprobe.probe import ProbeResult
from stackprobe.models import NetworkResponse


def _passive_record(**overrides):
    record = ScanRecord(
        url="https://example.com",
        domain="example.com",
        id="scan-1",
        scan_phases=ScanPhases(passive=PhaseStatus.COMPLETE, render=PhaseStatus.RUNNING),
        evidence=ScanEvidence(domains=["js.stripe.com"], patterns=[r"script_src: js\.stripe\.com"]),
    )
    for name, value in overrides.items():
        setattr(record, name, value)
    return record


def _detection(name, category, confidence, score):
    return DetectionResult(
        signature_id=name.lower(),
        name=name,
        category=category,
        confidence=confidence,
        score=score,
        receipts=[EvidenceReceipt(RuleType.HTML, name.lower(), name.lower(), score)],
    )


class TestAdvance:
    """Tests for the phase transition table."""

    def test_render_lifecycle(self):
        phases = ScanPhases(passive=PhaseStatus.COMPLETE)
        phases = advance(phases, "render", PhaseStatus.RUNNING)
        phases = advance(phases, "render", PhaseStatus.COMPLETE)
        assert phases.render == PhaseStatus.COMPLETE

    def test_render_can_be_skipped(self):
        phases = advance(ScanPhases(), "render", PhaseStatus.SKIPPED)
        assert phases.render == PhaseStatus.SKIPPED

    def test_returns_copy(self):
        phases = ScanPhases()
        advance(phases, "render", PhaseStatus.RUNNING)
        assert phases.render == PhaseStatus.PENDING

    def test_terminal_states_do_not_move(self):
        phases = ScanPhases(render=PhaseStatus.COMPLETE)
        with pytest.raises(PhaseTransitionError):
            advance(phases, "render", PhaseStatus.RUNNING)

    def test_probe_locked_until_render_finishes(self):
        phases = ScanPhases(passive=PhaseStatus.COMPLETE, render=PhaseStatus.RUNNING)
        assert not can_unlock_probe(phases)
        with pytest.raises(PhaseTransitionError):
            advance(phases, "probe", PhaseStatus.PENDING)

    @pytest.mark.parametrize("render", [PhaseStatus.COMPLETE, PhaseStatus.FAILED])
    def test_probe_unlocks_after_render(self, render):
        phases = ScanPhases(passive=PhaseStatus.COMPLETE, render=render)
        assert can_unlock_probe(phases)
        assert advance(phases, "probe", PhaseStatus.PENDING).probe == PhaseStatus.PENDING

    def test_probe_stays_locked_when_render_skipped(self):
        phases = ScanPhases(passive=PhaseStatus.COMPLETE, render=PhaseStatus.SKIPPED)
        assert not can_unlock_probe(phases)

    def test_probe_cannot_jump_to_running(self):
        phases = ScanPhases(render=PhaseStatus.COMPLETE)
        with pytest.raises(PhaseTransitionError):
            advance(phases, "probe", PhaseStatus.RUNNING)

    def test_unknown_phase(self):
        with pytest.raises(ValueError):
            advance(ScanPhases(), "deploy", PhaseStatus.RUNNING)


class TestUpgradeRules:
    """Tests for the upgrade-only merge predicates."""

    def test_empty_incumbent_accepts_any_confidence(self):
        assert should_upgrade(None, Confidence.MEDIUM)

    def test_set_incumbent_needs_high(self):
        assert not should_upgrade("React", Confidence.MEDIUM)
        assert should_upgrade("React", Confidence.HIGH)

    def test_same_value_at_higher_confidence(self):
        assert improves("React", Confidence.MEDIUM, "React", Confidence.HIGH)
        assert not improves("React", Confidence.HIGH, "React", Confidence.MEDIUM)

    def test_missing_candidate(self):
        assert not improves("React", Confidence.HIGH, None, None)


class TestInferTransport:
    """Tests for AI transport inference from captured traffic."""

    def test_sse_preferred(self, ai_signals):
        ai_signals.websockets = ["wss://chat.example.com/ws"]
        assert infer_transport(ai_signals) == TRANSPORT_SSE

    def test_websocket(self):
        signals = BrowserSignals(url="u", websockets=["wss://chat.example.com/ws"])
        assert infer_transport(signals) == TRANSPORT_WEBSOCKET

    def test_json(self):
        signals = BrowserSignals(url="u", responses=[NetworkResponse(url="u", content_type="application/json")])
        assert infer_transport(signals) == TRANSPORT_HTTP

    def test_unknown(self):
        assert infer_transport(BrowserSignals(url="u")) is None


class TestMergeRenderResults:
    """Tests for folding render results into a stored record."""

    def test_medium_does_not_overwrite_set_value(self):
        record = _passive_record(framework=CategoryValue("React", Confidence.HIGH))
        detections = [_detection("Next.js", Category.FRAMEWORK, Confidence.MEDIUM, 0.6)]

        partial = merge_render_results(record, BrowserSignals(url=record.url, html="<div>"), detections)

        assert "framework" not in partial
        assert apply_partial(record, partial).framework.value == "React"

    def test_high_overwrites_set_value(self):
        record = _passive_record(framework=CategoryValue("React", Confidence.MEDIUM))
        detections = [_detection("Next.js", Category.FRAMEWORK, Confidence.HIGH, 1.0)]

        partial = merge_render_results(record, BrowserSignals(url=record.url, html="<div>"), detections)

        assert partial["framework"] == CategoryValue("Next.js", Confidence.HIGH)

    def test_window_hint_beats_detections(self, ai_signals):
        record = _passive_record(framework=CategoryValue("React", Confidence.MEDIUM))
        detections = [_detection("Vue.js", Category.FRAMEWORK, Confidence.HIGH, 0.9)]

        partial = merge_render_results(record, ai_signals, detections)

        assert partial["framework"] == CategoryValue("Next.js", Confidence.HIGH)

    def test_empty_category_filled_at_medium(self):
        record = _passive_record()
        detections = [_detection("Intercom", Category.SUPPORT, Confidence.MEDIUM, 0.6)]

        partial = merge_render_results(record, BrowserSignals(url=record.url, html="<div>"), detections)

        assert partial["support"] == CategoryValue("Intercom", Confidence.MEDIUM)

    def test_ai_from_network_with_transport_and_gateway(self, ai_signals):
        record = _passive_record()

        partial = merge_render_results(record, ai_signals)
        ai = partial["ai"]

        assert ai.provider == "OpenAI"
        assert ai.confidence == Confidence.HIGH
        assert ai.transport == TRANSPORT_SSE
        assert ai.gateway == "Helicone"

    def test_gateway_set_even_without_provider_upgrade(self, ai_signals):
        record = _passive_record(ai=AIFields(provider="Anthropic", confidence=Confidence.HIGH,
                                             transport="Detected via script patterns"))
        ai_signals.domains = ["chat.example.com"]
        ai_signals.paths = []
        ai_signals.responses[0].content_type = "application/json"

        partial = merge_render_results(record, ai_signals)

        assert partial["ai"].provider == "Anthropic"
        assert partial["ai"].gateway == "Helicone"

    def test_observed_transport_replaces_passive_label(self, ai_signals):
        record = _passive_record(ai=AIFields(provider="OpenAI", confidence=Confidence.HIGH,
                                             transport="Detected via script patterns"))

        partial = merge_render_results(record, ai_signals)

        assert partial["ai"].provider == "OpenAI"
        assert partial["ai"].confidence == Confidence.HIGH
        assert partial["ai"].transport == TRANSPORT_SSE
        assert partial["ai"].gateway == "Helicone"

    def test_evidence_is_additive(self, ai_signals):
        record = _passive_record()

        partial = merge_render_results(record, ai_signals)
        evidence = partial["evidence"]

        assert "js.stripe.com" in evidence.domains
        assert r"script_src: js\.stripe\.com" in evidence.patterns
        assert "api.openai.com" in evidence.network_domains
        assert evidence.window_hints == ["__NEXT_DATA__"]

    def test_phase_and_mode(self, ai_signals):
        partial = merge_render_results(_passive_record(), ai_signals)
        assert partial["scan_mode"] == ScanMode.RENDER
        assert partial["scan_phases"].render == PhaseStatus.COMPLETE
        assert partial["scan_phases"].probe == PhaseStatus.LOCKED


class TestMergeProbeResults:
    """Tests for folding probe results into a stored record."""

    @pytest.fixture
    def rendered(self):
        return _passive_record(
            scan_phases=ScanPhases(
                passive=PhaseStatus.COMPLETE, render=PhaseStatus.COMPLETE, probe=PhaseStatus.RUNNING
            ),
            ai=AIFields(provider="OpenAI-compatible", confidence=Confidence.MEDIUM),
        )

    def test_payload_provider_upgrades_with_metrics(self, rendered):
        result = ProbeResult(
            url=rendered.url,
            chat_found=True,
            provider="Anthropic",
            inferred_model="Anthropic - claude-3-haiku",
            payload_signatures=["Anthropic"],
            network_calls=[{"url": "https://api.anthropic.com/v1/messages", "method": "POST",
                            "contentType": "text/event-stream"}],
            diagnostics=ProbeDiagnostics(prompt_sent="Hi", response_received="Hello!", ttft=420, tps=120,
                                         total_time=1500, token_count=40),
        )

        partial = merge_probe_results(rendered, result)

        assert partial["ai"].provider == "Anthropic"
        assert partial["ai"].confidence == Confidence.HIGH
        assert partial["ai"].ttft == 420
        assert partial["ai"].tps == 120
        assert partial["ai"].inferred_model == "Anthropic - claude-3-haiku"
        assert partial["scan_mode"] == ScanMode.PROBE
        assert partial["scan_phases"].probe == PhaseStatus.COMPLETE
        assert partial["evidence"].payload_signatures == ["Anthropic"]
        assert partial["evidence"].probe.ttft == 420
        assert partial["evidence"].domains == ["js.stripe.com"]

    def test_compatible_only_does_not_overwrite(self):
        record = _passive_record(
            scan_phases=ScanPhases(render=PhaseStatus.COMPLETE, probe=PhaseStatus.RUNNING),
            ai=AIFields(provider="OpenAI", confidence=Confidence.HIGH),
        )
        result = ProbeResult(url=record.url, chat_found=True, provider="OpenAI-compatible")

        partial = merge_probe_results(record, result)

        assert "ai" not in partial
        assert "scan_mode" not in partial
        assert partial["scan_phases"].probe == PhaseStatus.COMPLETE

    def test_error_marks_probe_failed(self, rendered):
        partial = merge_probe_results(rendered, ProbeResult(url=rendered.url, error="browser crashed"))
        assert partial["scan_phases"].probe == PhaseStatus.FAILED
        assert "ai" not in partial
