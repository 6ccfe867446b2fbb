"""Rolling detection results up into the evidence stored on a scan record."""

from typing import Dict, Iterable, List, Optional
from urllib.parse import urljoin

from stackprobe.extractor import hostname_of
from stackprobe.models import DetectionResult, RuleType, ScanEvidence
from stackprobe.signatures import THIRD_PARTY_SERVICES

MAX_SCRIPTS_IN_EVIDENCE = 10
MAX_DOMAINS_IN_EVIDENCE = 50


def _dedupe(values: Iterable[str]) -> List[str]:
    seen = set()
    out = []
    for value in values:
        if value and value not in seen:
            seen.add(value)
            out.append(value)
    return out


def _strip_www(host: str) -> str:
    return host[4:] if host.startswith("www.") else host


def receipt_domains(winners: Iterable[DetectionResult], base_url: str, page_domain: str) -> List[str]:
    """Domains named by dns and script_src receipts of the winning detections."""
    domains = []
    for result in winners:
        for receipt in result.receipts:
            if receipt.type is RuleType.DNS:
                domains.append(page_domain)
            elif receipt.type is RuleType.SCRIPT_SRC:
                try:
                    domains.append(hostname_of(urljoin(base_url, receipt.matched)))
                except ValueError:
                    continue
    return _dedupe(domains)[:MAX_DOMAINS_IN_EVIDENCE]


def receipt_patterns(winners: Iterable[DetectionResult]) -> List[str]:
    """Deduplicated "type: pattern" descriptions of every receipt."""
    return _dedupe(r.describe() for result in winners for r in result.receipts)


def service_group(host: str) -> Optional[str]:
    """Third-party group a host belongs to, or None."""
    host = host.lower()
    for group, suffixes in THIRD_PARTY_SERVICES:
        for suffix in suffixes:
            if host == suffix or host.endswith("." + suffix):
                return group
    return None


def group_third_party(hosts: Iterable[str], first_party: str = "") -> Dict[str, List[str]]:
    """Group external hosts by service kind (analytics, fonts, cdn, ...)."""
    own = _strip_www(first_party.lower())
    groups: Dict[str, List[str]] = {}
    for host in _dedupe(h.lower() for h in hosts):
        if own and (host == own or host.endswith("." + own) or _strip_www(host) == own):
            continue
        group = service_group(host)
        if group is None:
            continue
        bucket = groups.setdefault(group, [])
        if host not in bucket:
            bucket.append(host)
    return groups


def script_hosts(script_srcs: Iterable[str], base_url: str) -> List[str]:
    hosts = []
    for src in script_srcs:
        try:
            hosts.append(hostname_of(urljoin(base_url, src)))
        except ValueError:
            continue
    return _dedupe(hosts)


def build_evidence(
    winners: List[DetectionResult],
    detections: List[DetectionResult],
    script_srcs: List[str],
    base_url: str,
    page_domain: str,
    extra_hosts: Iterable[str] = (),
) -> ScanEvidence:
    """Assemble the evidence object for one phase's detections.

    Args:
        winners: Category winners (plus the AI winner) whose receipts are rolled up
        detections: Every detection, kept as grouped per-technology summaries
        script_srcs: Script sources seen on the page
        base_url: URL relative script sources resolve against
        page_domain: Hostname of the scanned page (excluded from third parties)
        extra_hosts: Additional hosts seen (render-phase network domains)
    """
    hosts = script_hosts(script_srcs, base_url) + list(extra_hosts)
    return ScanEvidence(
        domains=receipt_domains(winners, base_url, page_domain),
        patterns=receipt_patterns(winners),
        scripts=script_srcs[:MAX_SCRIPTS_IN_EVIDENCE],
        detections=list(detections),
        third_party=group_third_party(hosts, page_domain),
    )
