# tests/test_matcher.py
import pytest

from stackprobe.extractor import build_signal_bundle
from stackprobe.matcher import MAX_MATCHED_CHARS, match_rule, rank_signatures, score_signature
from stackprobe.models import (
    Category,
    Confidence,
    EvidenceRule,
    RuleType,
    Signature,
    SignalBundle,
    Thresholds,
)
from stackprobe.signatures import AI_SIGNATURES, SIGNATURE_DB


def _signature(sig_id):
    return next(s for s in SIGNATURE_DB + AI_SIGNATURES if s.id == sig_id)


class TestMatchRule:
    """Tests for single-rule evaluation."""

    def test_html_rule_returns_matched_text(self):
        bundle = SignalBundle(url="https://a.com", html="<div data-reactroot></div>")
        rule = EvidenceRule(RuleType.HTML, r"data-reactroot", 0.6)
        receipt = match_rule(rule, bundle)
        assert receipt is not None
        assert receipt.matched == "data-reactroot"
        assert receipt.weight == 0.6

    def test_html_rule_is_case_insensitive(self):
        bundle = SignalBundle(url="https://a.com", html="<script>window.SHOPIFY.THEME = {}</script>")
        rule = EvidenceRule(RuleType.HTML, r"Shopify\.theme", 0.7)
        assert match_rule(rule, bundle) is not None

    def test_script_src_returns_whole_source(self):
        bundle = SignalBundle(url="https://a.com", script_srcs=["/app.js", "https://js.stripe.com/v3/"])
        rule = EvidenceRule(RuleType.SCRIPT_SRC, r"js\.stripe\.com", 0.9)
        receipt = match_rule(rule, bundle)
        assert receipt.matched == "https://js.stripe.com/v3/"

    def test_header_wildcard_matches_presence(self):
        bundle = SignalBundle(url="https://a.com", headers={"cf-ray": ""})
        rule = EvidenceRule(RuleType.HEADER, r".*", 0.9, key="cf-ray")
        receipt = match_rule(rule, bundle)
        assert receipt is not None
        assert receipt.matched.startswith("cf-ray")

    def test_header_missing_does_not_match(self):
        bundle = SignalBundle(url="https://a.com", headers={"server": "nginx"})
        rule = EvidenceRule(RuleType.HEADER, r".*", 0.9, key="cf-ray")
        assert match_rule(rule, bundle) is None

    def test_header_prefix_key_covers_family(self):
        bundle = SignalBundle(url="https://a.com", headers={"x-amz-request-id": "abc"})
        rule = EvidenceRule(RuleType.HEADER, r".*", 0.7, key="x-amz-")
        receipt = match_rule(rule, bundle)
        assert receipt is not None
        assert "x-amz-request-id" in receipt.matched

    def test_header_value_pattern(self):
        bundle = SignalBundle(url="https://a.com", headers={"server": "cloudflare"})
        rule = EvidenceRule(RuleType.HEADER, r"cloudflare", 0.8, key="Server")
        assert match_rule(rule, bundle).matched == "server: cloudflare"

    def test_cookie_rule(self):
        bundle = SignalBundle(url="https://a.com", cookies=["__client_uat=0; Path=/"])
        rule = EvidenceRule(RuleType.COOKIE, r"__session|__client_uat", 0.6)
        assert match_rule(rule, bundle) is not None

    def test_meta_rule_sees_name_and_content(self):
        bundle = SignalBundle(url="https://a.com", meta={"generator": "WordPress 6.4"})
        rule = EvidenceRule(RuleType.META, r"WordPress", 0.8)
        assert match_rule(rule, bundle).matched == "generator=WordPress 6.4"

    def test_dns_rule_uses_domain(self):
        bundle = SignalBundle(url="https://demo.vercel.app", domain="demo.vercel.app")
        rule = EvidenceRule(RuleType.DNS, r"vercel\.app", 0.7)
        assert match_rule(rule, bundle) is not None

    def test_network_rule_ignored_on_passive_bundle(self):
        bundle = SignalBundle(url="https://a.com", html="api.openai.com")
        rule = EvidenceRule(RuleType.NETWORK, r"api\.openai\.com", 0.9)
        assert match_rule(rule, bundle) is None

    def test_network_rule_fires_on_rendered_bundle(self):
        bundle = SignalBundle(url="https://a.com", network_urls=["https://api.openai.com/v1/chat/completions"])
        rule = EvidenceRule(RuleType.NETWORK, r"api\.openai\.com", 0.9)
        assert match_rule(rule, bundle) is not None

    def test_invalid_pattern_never_matches(self):
        bundle = SignalBundle(url="https://a.com", html="anything (")
        rule = EvidenceRule(RuleType.HTML, r"(", 0.5)
        assert match_rule(rule, bundle) is None

    def test_long_match_is_truncated(self):
        src = "https://cdn.example.com/" + "a" * 500 + "/stripe.js"
        bundle = SignalBundle(url="https://a.com", script_srcs=[src])
        rule = EvidenceRule(RuleType.SCRIPT_SRC, r"stripe", 0.5)
        receipt = match_rule(rule, bundle)
        assert len(receipt.matched) == MAX_MATCHED_CHARS + 3
        assert receipt.matched.endswith("...")


class TestScoreSignature:
    """Tests for signature scoring and confidence assignment."""

    def test_stripe_script_is_high_with_one_receipt(self):
        bundle = build_signal_bundle(
            '<html><head><script src="https://js.stripe.com/v3/"></script></head></html>',
            {},
            "https://shop.example.com",
        )
        result = score_signature(_signature("stripe"), bundle)

        assert result.name == "Stripe"
        assert result.category == Category.PAYMENTS
        assert result.confidence == Confidence.HIGH
        assert result.score == pytest.approx(0.9)
        assert len(result.receipts) == 1
        assert result.receipts[0].type == RuleType.SCRIPT_SRC

    def test_cf_ray_alone_is_high_cloudflare(self):
        bundle = build_signal_bundle("", {"CF-Ray": "8a1b2c3d4e5f-SJC"}, "https://example.com")
        result = score_signature(_signature("cloudflare"), bundle)
        assert result.confidence == Confidence.HIGH
        assert result.score == pytest.approx(0.9)
        assert result.category == Category.CDN

    def test_score_is_capped_at_one(self):
        bundle = build_signal_bundle(
            "", {"cf-ray": "x", "server": "cloudflare", "cf-cache-status": "HIT"}, "https://example.com"
        )
        result = score_signature(_signature("cloudflare"), bundle)
        assert result.score == 1.0
        assert len(result.receipts) == 3

    def test_below_medium_threshold_is_no_match(self):
        bundle = SignalBundle(url="https://a.com", html="paypal button")
        assert score_signature(_signature("paypal"), bundle) is None

    def test_medium_confidence_between_thresholds(self):
        bundle = SignalBundle(url="https://a.com", html="<div data-reactroot></div>")
        result = score_signature(_signature("react"), bundle)
        assert result.confidence == Confidence.MEDIUM
        assert result.score == pytest.approx(0.6)

    def test_lenient_thresholds_for_ai_providers(self):
        bundle = SignalBundle(url="https://a.com", html="Ask our chatgpt assistant")
        result = score_signature(_signature("openai"), bundle)
        assert result is not None
        assert result.confidence == Confidence.MEDIUM

    def test_no_rules_fire(self):
        bundle = SignalBundle(url="https://a.com")
        assert score_signature(_signature("stripe"), bundle) is None

    def test_score_and_confidence_are_consistent(self):
        """Every match scores in [medium, 1] and is never Low."""
        html = (
            '<div id="__next" data-reactroot></div><script id="__NEXT_DATA__"></script>'
            "<script>gtag('config', 'G-ABC123')</script>"
        )
        bundle = build_signal_bundle(
            html + '<script src="/_next/static/chunks/main.js"></script>',
            {"x-vercel-id": "iad1::abc", "server": "Vercel"},
            "https://example.com",
        )
        for sig in SIGNATURE_DB + AI_SIGNATURES:
            result = score_signature(sig, bundle)
            if result is None:
                continue
            assert sig.thresholds.medium <= result.score <= 1.0
            assert result.confidence != Confidence.LOW
            expected = Confidence.HIGH if result.score >= sig.thresholds.high else Confidence.MEDIUM
            assert result.confidence == expected


class TestRankSignatures:
    """Tests for ranking a catalogue against a bundle."""

    def test_sorted_by_descending_score(self):
        bundle = build_signal_bundle(
            '<script src="/_next/static/a.js"></script><script id="__NEXT_DATA__"></script>'
            '<div data-reactroot></div>',
            {},
            "https://example.com",
        )
        results = rank_signatures(SIGNATURE_DB, bundle)
        scores = [r.score for r in results]
        assert scores == sorted(scores, reverse=True)
        assert results[0].name == "Next.js"

    def test_ties_keep_catalogue_order(self):
        first = Signature("a", "A", Category.ANALYTICS, (EvidenceRule(RuleType.HTML, "x", 0.6),),
                          Thresholds(0.8, 0.5))
        second = Signature("b", "B", Category.ANALYTICS, (EvidenceRule(RuleType.HTML, "x", 0.6),),
                           Thresholds(0.8, 0.5))
        results = rank_signatures([first, second], SignalBundle(url="u", html="x"))
        assert [r.name for r in results] == ["A", "B"]

    def test_empty_bundle_matches_nothing(self):
        bundle = build_signal_bundle("", {}, "https://example.com")
        assert rank_signatures(SIGNATURE_DB, bundle) == []
        assert rank_signatures(AI_SIGNATURES, bundle) == []

    def test_deterministic(self):
        bundle = build_signal_bundle(
            '<script src="https://js.stripe.com/v3/"></script>', {"cf-ray": "1"}, "https://example.com"
        )
        first = [r.to_dict() for r in rank_signatures(SIGNATURE_DB, bundle)]
        second = [r.to_dict() for r in rank_signatures(SIGNATURE_DB, bundle)]
        assert first == second
