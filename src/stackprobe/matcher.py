"""Rule matching and signature scoring.

A rule probes exactly one field of a SignalBundle with a case-insensitive
regex. A signature's score is the capped sum of the weights of the rules
that fired; below the medium threshold the signature does not match at all.
"""

import logging
import re
from functools import lru_cache
from typing import Iterable, List, Optional, Tuple

from stackprobe.models import (
    Confidence,
    DetectionResult,
    EvidenceReceipt,
    EvidenceRule,
    RuleType,
    Signature,
    SignalBundle,
)

logger = logging.getLogger(__name__)

WILDCARD = ".*"
MAX_MATCHED_CHARS = 120


@lru_cache(maxsize=1024)
def _compile(pattern: str) -> Optional[re.Pattern]:
    try:
        return re.compile(pattern, re.IGNORECASE)
    except re.error as e:
        logger.warning(f"Invalid signature pattern {pattern!r}: {e}")
        return None


def _truncate(text: str) -> str:
    if len(text) <= MAX_MATCHED_CHARS:
        return text
    return text[:MAX_MATCHED_CHARS] + "..."


def _first_hit(regex: re.Pattern, values: Iterable[str]) -> Optional[str]:
    """First list item the regex finds a match in (the whole item is returned)."""
    for value in values:
        if regex.search(value):
            return value
    return None


def _header_candidates(rule: EvidenceRule, headers: dict) -> List[Tuple[str, str]]:
    key = rule.key.lower()
    if key.endswith("-"):
        # Prefix keys such as "x-amz-" cover a whole header family
        return [(name, value) for name, value in headers.items() if name.startswith(key)]
    if key in headers:
        return [(key, headers[key])]
    return []


def match_rule(rule: EvidenceRule, bundle: SignalBundle) -> Optional[EvidenceReceipt]:
    """Evaluate one rule against a bundle.

    Returns:
        EvidenceReceipt with the matched text, or None
    """
    regex = _compile(rule.pattern)
    if regex is None:
        return None

    matched: Optional[str] = None

    if rule.type is RuleType.HTML:
        match = regex.search(bundle.html)
        matched = match.group(0) if match else None

    elif rule.type is RuleType.SCRIPT_SRC:
        matched = _first_hit(regex, bundle.script_srcs)

    elif rule.type is RuleType.HEADER:
        for name, value in _header_candidates(rule, bundle.headers):
            if rule.pattern == WILDCARD:
                matched = f"{name}: {value}"
                break
            match = regex.search(value)
            if match:
                matched = f"{name}: {match.group(0)}"
                break

    elif rule.type is RuleType.COOKIE:
        matched = _first_hit(regex, bundle.cookies)

    elif rule.type is RuleType.META:
        matched = _first_hit(regex, (f"{name}={content}" for name, content in bundle.meta.items()))

    elif rule.type is RuleType.DNS:
        match = regex.search(bundle.domain) if bundle.domain else None
        matched = match.group(0) if match else None

    elif rule.type is RuleType.NETWORK:
        matched = _first_hit(regex, bundle.network_urls)

    elif rule.type is RuleType.SCRIPT_BODY:
        matched = _first_hit(regex, bundle.script_bodies)

    if matched is None:
        return None

    return EvidenceReceipt(
        type=rule.type,
        pattern=rule.pattern,
        matched=_truncate(matched),
        weight=rule.weight,
        key=rule.key,
    )


def score_signature(signature: Signature, bundle: SignalBundle) -> Optional[DetectionResult]:
    """Score one signature against a bundle.

    Returns:
        DetectionResult at High or Medium confidence, or None when the capped
        score is below the signature's medium threshold
    """
    receipts = []
    for rule in signature.rules:
        receipt = match_rule(rule, bundle)
        if receipt is not None:
            receipts.append(receipt)

    if not receipts:
        return None

    score = min(round(sum(r.weight for r in receipts), 6), 1.0)
    if score < signature.thresholds.medium:
        return None

    confidence = Confidence.HIGH if score >= signature.thresholds.high else Confidence.MEDIUM
    logger.debug(f"{signature.name}: score={score} confidence={confidence.value} rules={len(receipts)}")

    return DetectionResult(
        signature_id=signature.id,
        name=signature.name,
        category=signature.category,
        confidence=confidence,
        score=score,
        receipts=receipts,
    )


def rank_signatures(signatures: Iterable[Signature], bundle: SignalBundle) -> List[DetectionResult]:
    """Score every signature and return matches by descending score.

    Ties keep catalogue order.
    """
    results = []
    for signature in signatures:
        result = score_signature(signature, bundle)
        if result is not None:
            results.append(result)
    results.sort(key=lambda r: -r.score)
    return results
