"""Data models for stack detection."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from stackprobe.exceptions import RecordValidationError


class Category(str, Enum):
    """Technology category a signature reports into."""
    FRAMEWORK = "framework"
    HOSTING = "hosting"
    CDN = "cdn"
    PAYMENTS = "payments"
    AUTH = "auth"
    ANALYTICS = "analytics"
    SUPPORT = "support"
    AI = "ai"
    CMS = "cms"


class RuleType(str, Enum):
    """Which field of a signal bundle an evidence rule probes."""
    HTML = "html"
    SCRIPT_SRC = "script_src"
    HEADER = "header"
    COOKIE = "cookie"
    META = "meta"
    DNS = "dns"
    NETWORK = "network"
    SCRIPT_BODY = "script_body"


class Confidence(str, Enum):
    """Confidence tier of a detection."""
    HIGH = "High"
    MEDIUM = "Medium"
    LOW = "Low"

    @property
    def rank(self) -> int:
        return {"High": 3, "Medium": 2, "Low": 1}[self.value]


class PhaseStatus(str, Enum):
    """Status of one scan phase."""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETE = "complete"
    FAILED = "failed"
    SKIPPED = "skipped"
    LOCKED = "locked"


class ScanMode(str, Enum):
    """Deepest phase whose results are folded into a record."""
    PASSIVE = "passive"
    RENDER = "render"
    PROBE = "probe"


# Category columns carried on every scan record, in display order
CATEGORY_FIELDS = ("framework", "hosting", "payments", "auth", "analytics", "support")


def _confidence(value: Any) -> Optional[Confidence]:
    if value is None or value == "":
        return None
    if isinstance(value, Confidence):
        return value
    return Confidence(value)


def _datetime(value: Any) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value)


def _union(existing: list, incoming: list) -> list:
    """Order-preserving union of two lists of hashable items."""
    merged = list(existing)
    seen = set(existing)
    for item in incoming:
        if item not in seen:
            seen.add(item)
            merged.append(item)
    return merged


# ============================================================================
# Signature Models
# ============================================================================

@dataclass(frozen=True)
class Thresholds:
    """Score cutoffs for a signature."""
    high: float
    medium: float

    def __post_init__(self):
        if not (0.0 <= self.medium <= self.high <= 1.0):
            raise ValueError(
                f"Thresholds must satisfy 0 <= medium <= high <= 1 (got high={self.high}, medium={self.medium})"
            )


@dataclass(frozen=True)
class EvidenceRule:
    """One weighted test against a signal bundle."""
    type: RuleType
    pattern: str
    weight: float
    key: Optional[str] = None  # header name (or prefix ending in '-')

    def __post_init__(self):
        if not (0.0 < self.weight <= 1.0):
            raise ValueError(f"Rule weight must be in (0, 1], got {self.weight}")
        if self.type is RuleType.HEADER and not self.key:
            raise ValueError(f"Header rule '{self.pattern}' needs a key")


@dataclass(frozen=True)
class Signature:
    """A named detector: weighted rules plus confidence thresholds."""
    id: str
    name: str
    category: Category
    rules: tuple
    thresholds: Thresholds = Thresholds(high=0.8, medium=0.5)


# ============================================================================
# Detection Models
# ============================================================================

@dataclass
class EvidenceReceipt:
    """Proof that one rule fired."""
    type: RuleType
    pattern: str
    matched: str
    weight: float
    key: Optional[str] = None

    def describe(self) -> str:
        """Human-readable "type: pattern" string, keyed by header name for header rules."""
        if self.key:
            return f"{self.type.value}: {self.key} ~ {self.pattern}"
        return f"{self.type.value}: {self.pattern}"

    def to_dict(self) -> dict[str, Any]:
        data = {
            "type": self.type.value,
            "pattern": self.pattern,
            "matched": self.matched,
            "weight": self.weight,
        }
        if self.key:
            data["key"] = self.key
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "EvidenceReceipt":
        return cls(
            type=RuleType(data["type"]),
            pattern=data["pattern"],
            matched=data.get("matched", ""),
            weight=data.get("weight", 0.0),
            key=data.get("key"),
        )


@dataclass
class DetectionResult:
    """Outcome of scoring one signature against one bundle."""
    signature_id: str
    name: str
    category: Category
    confidence: Confidence
    score: float
    receipts: list[EvidenceReceipt] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.signature_id,
            "name": self.name,
            "category": self.category.value,
            "confidence": self.confidence.value,
            "score": self.score,
            "receipts": [r.to_dict() for r in self.receipts],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "DetectionResult":
        return cls(
            signature_id=data["id"],
            name=data["name"],
            category=Category(data["category"]),
            confidence=Confidence(data["confidence"]),
            score=data.get("score", 0.0),
            receipts=[EvidenceReceipt.from_dict(r) for r in data.get("receipts", [])],
        )


# ============================================================================
# Signal Models
# ============================================================================

@dataclass
class SignalBundle:
    """Normalized, scan-scoped view of one page fetch.

    ``network_urls`` and ``script_bodies`` are only populated from a rendered
    page; rules of type network/script_body never fire on a passive bundle.
    """
    url: str
    final_url: str = ""
    html: str = ""
    headers: dict[str, str] = field(default_factory=dict)
    cookies: list[str] = field(default_factory=list)
    script_srcs: list[str] = field(default_factory=list)
    meta: dict[str, str] = field(default_factory=dict)
    domain: str = ""
    network_urls: list[str] = field(default_factory=list)
    script_bodies: list[str] = field(default_factory=list)


@dataclass
class NetworkRequest:
    url: str
    method: str = "GET"
    resource_type: str = "other"

    def to_dict(self) -> dict[str, Any]:
        return {"url": self.url, "method": self.method, "resourceType": self.resource_type}


@dataclass
class NetworkResponse:
    url: str
    status: int = 0
    content_type: Optional[str] = None
    headers: dict[str, str] = field(default_factory=dict)


@dataclass
class BrowserSignals:
    """Everything the render capture observed for one page load."""
    url: str
    final_url: str = ""
    status: Optional[int] = None
    headers: dict[str, str] = field(default_factory=dict)
    html: str = ""
    script_srcs: list[str] = field(default_factory=list)
    inline_scripts: list[str] = field(default_factory=list)
    meta: dict[str, list[str]] = field(default_factory=dict)
    cookies: list[dict[str, Any]] = field(default_factory=list)
    window_hints: dict[str, bool] = field(default_factory=dict)
    requests: list[NetworkRequest] = field(default_factory=list)
    responses: list[NetworkResponse] = field(default_factory=list)
    websockets: list[str] = field(default_factory=list)
    domains: list[str] = field(default_factory=list)
    paths: list[str] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def empty(self) -> bool:
        return not self.html and not self.requests and not self.responses


# ============================================================================
# Scan Record Models
# ============================================================================

@dataclass
class CategoryValue:
    """Detected technology for one category and its confidence label."""
    value: Optional[str] = None
    confidence: Optional[Confidence] = None

    @property
    def is_set(self) -> bool:
        return bool(self.value)


@dataclass
class AIFields:
    """AI-layer columns of a scan record."""
    provider: Optional[str] = None
    confidence: Optional[Confidence] = None
    transport: Optional[str] = None
    gateway: Optional[str] = None
    inferred_model: Optional[str] = None
    ttft: Optional[int] = None  # milliseconds
    tps: Optional[int] = None  # tokens per second


@dataclass
class ScanPhases:
    """Per-phase status. Legal moves live in stackprobe.phases."""
    passive: PhaseStatus = PhaseStatus.PENDING
    render: PhaseStatus = PhaseStatus.PENDING
    probe: PhaseStatus = PhaseStatus.LOCKED

    def to_dict(self) -> dict[str, str]:
        return {"passive": self.passive.value, "render": self.render.value, "probe": self.probe.value}

    @classmethod
    def from_dict(cls, data: Optional[dict[str, str]]) -> "ScanPhases":
        data = data or {}
        return cls(
            passive=PhaseStatus(data.get("passive", "pending")),
            render=PhaseStatus(data.get("render", "pending")),
            probe=PhaseStatus(data.get("probe", "locked")),
        )

    @property
    def settled(self) -> bool:
        """True once no phase is pending or running (polling can stop)."""
        busy = (PhaseStatus.PENDING, PhaseStatus.RUNNING)
        return not any(s in busy for s in (self.passive, self.render, self.probe))


@dataclass
class ProbeDiagnostics:
    """What the chat interaction probe sent, saw and measured."""
    prompt_sent: str = ""
    response_received: str = ""
    ttft: int = 0  # ms
    tps: int = 0
    total_time: int = 0  # ms
    token_count: int = 0
    chat_input_selector: Optional[str] = None
    send_button_selector: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "promptSent": self.prompt_sent,
            "responseReceived": self.response_received,
            "ttft": self.ttft,
            "tps": self.tps,
            "totalTime": self.total_time,
            "tokenCount": self.token_count,
            "chatInputSelector": self.chat_input_selector,
            "sendButtonSelector": self.send_button_selector,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ProbeDiagnostics":
        return cls(
            prompt_sent=data.get("promptSent", ""),
            response_received=data.get("responseReceived", ""),
            ttft=data.get("ttft", 0),
            tps=data.get("tps", 0),
            total_time=data.get("totalTime", 0),
            token_count=data.get("tokenCount", 0),
            chat_input_selector=data.get("chatInputSelector"),
            send_button_selector=data.get("sendButtonSelector"),
        )


@dataclass
class ScanEvidence:
    """Evidence blob stored with a scan record.

    Each sub-section is optional-by-emptiness; ``merged_with`` unions two
    evidence objects so later phases only ever add to what is stored.
    """
    domains: list[str] = field(default_factory=list)
    patterns: list[str] = field(default_factory=list)
    scripts: list[str] = field(default_factory=list)
    detections: list[DetectionResult] = field(default_factory=list)
    third_party: dict[str, list[str]] = field(default_factory=dict)

    # Render phase
    network_domains: list[str] = field(default_factory=list)
    network_paths: list[str] = field(default_factory=list)
    websockets: list[str] = field(default_factory=list)
    window_hints: list[str] = field(default_factory=list)

    # Probe phase
    network_requests: list[dict[str, Any]] = field(default_factory=list)
    payload_signatures: list[str] = field(default_factory=list)
    probe: Optional[ProbeDiagnostics] = None

    def merged_with(self, other: "ScanEvidence") -> "ScanEvidence":
        """Return a new evidence object holding the union of both."""
        detections = {d.name: d for d in self.detections}
        for det in other.detections:
            current = detections.get(det.name)
            if current is None or det.score > current.score:
                detections[det.name] = det

        third_party = {k: list(v) for k, v in self.third_party.items()}
        for group, domains in other.third_party.items():
            third_party[group] = _union(third_party.get(group, []), domains)

        seen_requests = {(r.get("url"), r.get("method")) for r in self.network_requests}
        requests = list(self.network_requests)
        for req in other.network_requests:
            if (req.get("url"), req.get("method")) not in seen_requests:
                seen_requests.add((req.get("url"), req.get("method")))
                requests.append(req)

        return ScanEvidence(
            domains=_union(self.domains, other.domains),
            patterns=_union(self.patterns, other.patterns),
            scripts=_union(self.scripts, other.scripts),
            detections=sorted(detections.values(), key=lambda d: -d.score),
            third_party=third_party,
            network_domains=_union(self.network_domains, other.network_domains),
            network_paths=_union(self.network_paths, other.network_paths),
            websockets=_union(self.websockets, other.websockets),
            window_hints=_union(self.window_hints, other.window_hints),
            network_requests=requests,
            payload_signatures=_union(self.payload_signatures, other.payload_signatures),
            probe=other.probe or self.probe,
        )

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "domains": self.domains,
            "patterns": self.patterns,
            "scripts": self.scripts,
            "detections": [d.to_dict() for d in self.detections],
            "thirdParty": self.third_party,
        }
        optional = {
            "networkDomains": self.network_domains,
            "networkPaths": self.network_paths,
            "websockets": self.websockets,
            "windowHints": self.window_hints,
            "networkRequests": self.network_requests,
            "payloadSignatures": self.payload_signatures,
        }
        data.update({k: v for k, v in optional.items() if v})
        if self.probe:
            data["probe"] = self.probe.to_dict()
        return data

    @classmethod
    def from_dict(cls, data: Optional[dict[str, Any]]) -> "ScanEvidence":
        data = data or {}
        return cls(
            domains=data.get("domains", []),
            patterns=data.get("patterns", []),
            scripts=data.get("scripts", []),
            detections=[DetectionResult.from_dict(d) for d in data.get("detections", [])],
            third_party=data.get("thirdParty", {}),
            network_domains=data.get("networkDomains", []),
            network_paths=data.get("networkPaths", []),
            websockets=data.get("websockets", []),
            window_hints=data.get("windowHints", []),
            network_requests=data.get("networkRequests", []),
            payload_signatures=data.get("payloadSignatures", []),
            probe=ProbeDiagnostics.from_dict(data["probe"]) if data.get("probe") else None,
        )


@dataclass
class ScanRecord:
    """Durable, progressively-updated result of detecting one URL."""
    url: str
    domain: str
    id: Optional[str] = None
    user_id: Optional[str] = None
    scanned_at: datetime = field(default_factory=datetime.now)

    framework: CategoryValue = field(default_factory=CategoryValue)
    hosting: CategoryValue = field(default_factory=CategoryValue)
    payments: CategoryValue = field(default_factory=CategoryValue)
    auth: CategoryValue = field(default_factory=CategoryValue)
    analytics: CategoryValue = field(default_factory=CategoryValue)
    support: CategoryValue = field(default_factory=CategoryValue)

    ai: AIFields = field(default_factory=AIFields)

    scan_mode: ScanMode = ScanMode.PASSIVE
    scan_phases: ScanPhases = field(default_factory=ScanPhases)
    evidence: ScanEvidence = field(default_factory=ScanEvidence)

    def category(self, name: str) -> CategoryValue:
        return getattr(self, name)

    def validate(self) -> "ScanRecord":
        """Check the record is fit to persist.

        Raises:
            RecordValidationError: listing every problem found
        """
        problems = []
        if not self.url or not isinstance(self.url, str):
            problems.append("url is required")
        if not isinstance(self.domain, str):
            problems.append("domain must be a string")
        for name in CATEGORY_FIELDS:
            cv = self.category(name)
            if cv.value and cv.confidence is None:
                problems.append(f"{name} is set without a confidence")
            if cv.confidence is not None and not isinstance(cv.confidence, Confidence):
                problems.append(f"{name} confidence is not a Confidence")
        if self.ai.provider and self.ai.confidence is None:
            problems.append("aiProvider is set without a confidence")
        if self.scan_phases.probe is not PhaseStatus.LOCKED and self.scan_phases.render in (
            PhaseStatus.PENDING, PhaseStatus.RUNNING
        ):
            problems.append("probe cannot leave locked before render finishes")
        if problems:
            raise RecordValidationError(problems)
        return self

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the outbound JSON shape (camelCase keys)."""
        data: dict[str, Any] = {
            "id": self.id,
            "url": self.url,
            "domain": self.domain,
            "userId": self.user_id,
            "scannedAt": self.scanned_at.isoformat(),
        }
        for name in CATEGORY_FIELDS:
            cv = self.category(name)
            data[name] = cv.value
            data[f"{name}Confidence"] = cv.confidence.value if cv.confidence else None
        data.update({
            "aiProvider": self.ai.provider,
            "aiConfidence": self.ai.confidence.value if self.ai.confidence else None,
            "aiTransport": self.ai.transport,
            "aiGateway": self.ai.gateway,
            "inferredModel": self.ai.inferred_model,
            "ttft": self.ai.ttft,
            "tps": self.ai.tps,
            "scanMode": self.scan_mode.value,
            "scanPhases": self.scan_phases.to_dict(),
            "evidence": self.evidence.to_dict(),
        })
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ScanRecord":
        """Deserialize from the outbound JSON shape."""
        categories = {
            name: CategoryValue(
                value=data.get(name),
                confidence=_confidence(data.get(f"{name}Confidence")),
            )
            for name in CATEGORY_FIELDS
        }
        return cls(
            id=data.get("id"),
            url=data["url"],
            domain=data.get("domain", ""),
            user_id=data.get("userId"),
            scanned_at=_datetime(data.get("scannedAt")) or datetime.now(),
            ai=AIFields(
                provider=data.get("aiProvider"),
                confidence=_confidence(data.get("aiConfidence")),
                transport=data.get("aiTransport"),
                gateway=data.get("aiGateway"),
                inferred_model=data.get("inferredModel"),
                ttft=data.get("ttft"),
                tps=data.get("tps"),
            ),
            scan_mode=ScanMode(data.get("scanMode", "passive")),
            scan_phases=ScanPhases.from_dict(data.get("scanPhases")),
            evidence=ScanEvidence.from_dict(data.get("evidence")),
            **categories,
        )


# ============================================================================
# Change Tracking Models
# ============================================================================

@dataclass
class FieldChange:
    tech: str
    from_value: str
    to_value: str

    def to_dict(self) -> dict[str, str]:
        return {"tech": self.tech, "from": self.from_value, "to": self.to_value}


@dataclass
class ChangeSet:
    """Structured added/removed/modified diff between two scans."""
    added: list[str] = field(default_factory=list)
    removed: list[str] = field(default_factory=list)
    modified: list[FieldChange] = field(default_factory=list)

    @property
    def has_changes(self) -> bool:
        return bool(self.added or self.removed or self.modified)

    def to_dict(self) -> dict[str, Any]:
        return {
            "added": self.added,
            "removed": self.removed,
            "modified": [m.to_dict() for m in self.modified],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ChangeSet":
        return cls(
            added=data.get("added", []),
            removed=data.get("removed", []),
            modified=[
                FieldChange(tech=m["tech"], from_value=m["from"], to_value=m["to"])
                for m in data.get("modified", [])
            ],
        )


@dataclass
class ChangeEvent:
    """Diff between two scans of a tracked domain."""
    subscription_id: str
    new_scan_id: str
    changes: ChangeSet
    change_summary: str
    old_scan_id: Optional[str] = None
    change_type: str = "stack_change"
    id: Optional[str] = None
    notification_sent: bool = False
    notification_sent_at: Optional[datetime] = None
    created_at: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "subscriptionId": self.subscription_id,
            "oldScanId": self.old_scan_id,
            "newScanId": self.new_scan_id,
            "changeType": self.change_type,
            "changeSummary": self.change_summary,
            "changes": self.changes.to_dict(),
            "notificationSent": self.notification_sent,
            "notificationSentAt": self.notification_sent_at.isoformat() if self.notification_sent_at else None,
            "createdAt": self.created_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ChangeEvent":
        return cls(
            id=data.get("id"),
            subscription_id=data["subscriptionId"],
            old_scan_id=data.get("oldScanId"),
            new_scan_id=data["newScanId"],
            change_type=data.get("changeType", "stack_change"),
            change_summary=data.get("changeSummary", ""),
            changes=ChangeSet.from_dict(data.get("changes", {})),
            notification_sent=bool(data.get("notificationSent", False)),
            notification_sent_at=_datetime(data.get("notificationSentAt")),
            created_at=_datetime(data.get("createdAt")) or datetime.now(),
        )


@dataclass
class Subscription:
    """A tracked domain the rescan worker revisits."""
    url: str
    domain: str
    user_id: Optional[str] = None
    id: Optional[str] = None
    notify_on_change: bool = True
    is_active: bool = True
    last_scanned_at: Optional[datetime] = None
    last_scan_id: Optional[str] = None
    created_at: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "userId": self.user_id,
            "url": self.url,
            "domain": self.domain,
            "notifyOnChange": self.notify_on_change,
            "isActive": self.is_active,
            "lastScannedAt": self.last_scanned_at.isoformat() if self.last_scanned_at else None,
            "lastScanId": self.last_scan_id,
            "createdAt": self.created_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Subscription":
        return cls(
            id=data.get("id"),
            user_id=data.get("userId"),
            url=data["url"],
            domain=data["domain"],
            notify_on_change=bool(data.get("notifyOnChange", True)),
            is_active=bool(data.get("isActive", True)),
            last_scanned_at=_datetime(data.get("lastScannedAt")),
            last_scan_id=data.get("lastScanId"),
            created_at=_datetime(data.get("createdAt")) or datetime.now(),
        )
