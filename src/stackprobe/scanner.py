"""
Passive scan orchestration.

A passive scan is one HTTP fetch plus pure pattern matching: no JavaScript
runs. Network problems never escape this module; they degrade the scan to
"nothing found" so the caller always gets a record back.
"""
import logging
import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence
from urllib.parse import urlparse

import httpx

from stackprobe.config import ScanConfig, default_config
from stackprobe.evidence import build_evidence
from stackprobe.exceptions import InvalidURLError
from stackprobe.extractor import build_signal_bundle
from stackprobe.matcher import rank_signatures
from stackprobe.models import (
    CATEGORY_FIELDS,
    AIFields,
    Category,
    CategoryValue,
    DetectionResult,
    PhaseStatus,
    ScanMode,
    ScanPhases,
    ScanRecord,
    Signature,
    SignalBundle,
)
from stackprobe.signatures import AI_SIGNATURES, SIGNATURE_DB

logger = logging.getLogger(__name__)

PASSIVE_AI_TRANSPORT = "Detected via script patterns"

_SCHEME_RE = re.compile(r"^[a-z][a-z0-9+.-]*://", re.IGNORECASE)


def normalize_url(url) -> str:
    """Trim a user-supplied URL and prepend https:// when it has no scheme.

    Raises:
        InvalidURLError: If the URL is missing or blank
    """
    if not isinstance(url, str) or not url.strip():
        raise InvalidURLError(url)
    url = url.strip()
    if not _SCHEME_RE.match(url):
        url = f"https://{url}"
    return url


def normalize_domain(url_or_host: str) -> str:
    """Lowercased hostname with any leading www. removed."""
    value = url_or_host.strip().lower()
    if "://" in value:
        try:
            value = urlparse(value).hostname or ""
        except ValueError:
            return ""
    else:
        value = value.split("/", 1)[0].split(":", 1)[0]
    return value[4:] if value.startswith("www.") else value


@dataclass
class FetchResult:
    """Outcome of the passive page fetch (empty when anything went wrong)."""

    url: str
    final_url: str = ""
    status_code: int = 0
    headers: Dict[str, str] = field(default_factory=dict)
    html: str = ""
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None and bool(self.html or self.headers)


def _is_html(content_type: Optional[str]) -> bool:
    if not content_type:
        return True
    content_type = content_type.lower()
    return "html" in content_type


def _collect_headers(headers: httpx.Headers) -> Dict[str, str]:
    """Lower-case header map; repeated headers (set-cookie) are joined with ', '."""
    collected: Dict[str, str] = {}
    for name, value in headers.multi_items():
        name = name.lower()
        if name in collected:
            collected[name] = f"{collected[name]}, {value}"
        else:
            collected[name] = value
    return collected


def pick_category_winners(detections: Sequence[DetectionResult]) -> Dict[str, DetectionResult]:
    """Top detection per record category (input must be ranked by score).

    A CDN detection stands in for hosting when no hosting signature fired.
    CMS detections fill no field.
    """
    winners: Dict[str, DetectionResult] = {}
    for name in CATEGORY_FIELDS:
        category = Category(name)
        winner = next((d for d in detections if d.category is category), None)
        if winner is None and category is Category.HOSTING:
            winner = next((d for d in detections if d.category is Category.CDN), None)
        if winner is not None:
            winners[name] = winner
    return winners


class PassiveScanner:
    """
    Fetch a page once and score the signature catalogue against it.

        scanner = PassiveScanner()
        record = await scanner.scan("example.com")

    Args:
        config: Scan tunables (timeout, body cap, user agent)
        client: Optional shared httpx.AsyncClient; one is created per fetch otherwise
        signatures: Technology catalogue
        ai_signatures: AI provider catalogue
    """

    def __init__(
        self,
        config: Optional[ScanConfig] = None,
        client: Optional[httpx.AsyncClient] = None,
        signatures: Sequence[Signature] = SIGNATURE_DB,
        ai_signatures: Sequence[Signature] = AI_SIGNATURES,
    ):
        self.config = config or default_config
        self._client = client
        self.signatures = signatures
        self.ai_signatures = ai_signatures

    async def fetch(self, url: str) -> FetchResult:
        """Fetch a page, never raising.

        Non-2xx responses, non-HTML bodies, timeouts and transport errors all
        produce an empty FetchResult with ``error`` set.
        """
        request_headers = {
            "User-Agent": self.config.user_agent,
            "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
            "Accept-Language": "en-US,en;q=0.9",
        }

        try:
            if self._client is not None:
                return await self._fetch_with(self._client, url, request_headers)
            async with httpx.AsyncClient(
                timeout=self.config.fetch_timeout,
                follow_redirects=True,
            ) as client:
                return await self._fetch_with(client, url, request_headers)
        except httpx.TimeoutException:
            logger.warning(f"Fetch timed out after {self.config.fetch_timeout}s: {url}")
            return FetchResult(url=url, final_url=url, error="timeout")
        except Exception as e:
            logger.warning(f"Fetch failed for {url}: {e}")
            return FetchResult(url=url, final_url=url, error=str(e) or type(e).__name__)

    async def _fetch_with(self, client: httpx.AsyncClient, url: str, headers: Dict[str, str]) -> FetchResult:
        async with client.stream(
            "GET", url, headers=headers, timeout=self.config.fetch_timeout, follow_redirects=True
        ) as response:
            final_url = str(response.url)
            status = response.status_code

            if not response.is_success:
                logger.info(f"Fetch returned {status} for {url}; continuing with empty signals")
                return FetchResult(url=url, final_url=final_url, status_code=status, error=f"HTTP {status}")

            content_type = response.headers.get("content-type")
            if not _is_html(content_type):
                logger.info(f"Skipping non-HTML body ({content_type}) for {url}")
                return FetchResult(
                    url=url, final_url=final_url, status_code=status,
                    error=f"unsupported content-type: {content_type}",
                )

            body = bytearray()
            async for chunk in response.aiter_bytes():
                remaining = self.config.max_body_bytes - len(body)
                body.extend(chunk[:remaining])
                if len(body) >= self.config.max_body_bytes:
                    logger.debug(f"Body capped at {self.config.max_body_bytes} bytes for {url}")
                    break

            encoding = response.encoding or "utf-8"
            html = bytes(body).decode(encoding, errors="replace")

            return FetchResult(
                url=url,
                final_url=final_url,
                status_code=status,
                headers=_collect_headers(response.headers),
                html=html,
            )

    def analyze(self, bundle: SignalBundle, url: str, user_id: Optional[str] = None) -> ScanRecord:
        """Score both catalogues against a bundle and build a passive record.

        Pure: the same bundle always yields the same detections and evidence.
        """
        detections = rank_signatures(self.signatures, bundle)
        ai_detections = rank_signatures(self.ai_signatures, bundle)

        winners = pick_category_winners(detections)
        ai_winner = ai_detections[0] if ai_detections else None

        record = ScanRecord(url=url, domain=normalize_domain(bundle.final_url or url), user_id=user_id)
        for name, winner in winners.items():
            setattr(record, name, CategoryValue(value=winner.name, confidence=winner.confidence))

        if ai_winner is not None:
            record.ai = AIFields(
                provider=ai_winner.name,
                confidence=ai_winner.confidence,
                transport=PASSIVE_AI_TRANSPORT,
            )

        rolled_up: List[DetectionResult] = list(winners.values())
        if ai_winner is not None:
            rolled_up.append(ai_winner)

        record.evidence = build_evidence(
            winners=rolled_up,
            detections=detections + ai_detections,
            script_srcs=bundle.script_srcs,
            base_url=bundle.final_url or url,
            page_domain=bundle.domain,
        )
        record.scan_mode = ScanMode.PASSIVE
        return record

    async def scan(self, url: str, user_id: Optional[str] = None) -> ScanRecord:
        """Run a complete passive scan.

        Returns:
            ScanRecord with passive=complete, render=pending, probe=locked

        Raises:
            InvalidURLError: If the URL is missing or blank
        """
        url = normalize_url(url)
        logger.info(f"Passive scan started: {url}")

        fetched = await self.fetch(url)
        bundle = build_signal_bundle(fetched.html, fetched.headers, url, fetched.final_url or url)
        record = self.analyze(bundle, url, user_id=user_id)
        record.scan_phases = ScanPhases(
            passive=PhaseStatus.COMPLETE,
            render=PhaseStatus.PENDING,
            probe=PhaseStatus.LOCKED,
        )

        found = [f"{n}={record.category(n).value}" for n in CATEGORY_FIELDS if record.category(n).is_set]
        if record.ai.provider:
            found.append(f"ai={record.ai.provider}")
        logger.info(f"Passive scan complete: {url} ({', '.join(found) or 'no detections'})")
        return record
