"""Technology and AI stack fingerprinting for websites."""

__version__ = "0.1.0"

from stackprobe.models import (
    Category,
    Confidence,
    DetectionResult,
    EvidenceReceipt,
    EvidenceRule,
    PhaseStatus,
    ScanEvidence,
    ScanMode,
    ScanPhases,
    ScanRecord,
    Signature,
    SignalBundle,
    Subscription,
)
from stackprobe.signatures import AI_SIGNATURES, SIGNATURE_DB
from stackprobe.extractor import build_signal_bundle
from stackprobe.matcher import match_rule, rank_signatures, score_signature
from stackprobe.scanner import PassiveScanner, normalize_domain, normalize_url
from stackprobe.browser import BrowserScanner, detect_ai_from_network, detect_framework_from_hints
from stackprobe.probe import InteractionProbe, infer_model
from stackprobe.phases import advance, merge_probe_results, merge_render_results
from stackprobe.service import ScanService
from stackprobe.database import get_db_client
from stackprobe.monitor import RescanWorker, detect_changes
from stackprobe.config import ScanConfig, settings
from stackprobe.browser_config import BrowserConfig
from stackprobe.exceptions import StackProbeError

__all__ = [
    "Category",
    "Confidence",
    "DetectionResult",
    "EvidenceReceipt",
    "EvidenceRule",
    "PhaseStatus",
    "ScanEvidence",
    "ScanMode",
    "ScanPhases",
    "ScanRecord",
    "Signature",
    "SignalBundle",
    "Subscription",
    "AI_SIGNATURES",
    "SIGNATURE_DB",
    "build_signal_bundle",
    "match_rule",
    "rank_signatures",
    "score_signature",
    "PassiveScanner",
    "normalize_domain",
    "normalize_url",
    "BrowserScanner",
    "detect_ai_from_network",
    "detect_framework_from_hints",
    "InteractionProbe",
    "infer_model",
    "advance",
    "merge_probe_results",
    "merge_render_results",
    "ScanService",
    "get_db_client",
    "RescanWorker",
    "detect_changes",
    "ScanConfig",
    "settings",
    "BrowserConfig",
    "StackProbeError",
]
