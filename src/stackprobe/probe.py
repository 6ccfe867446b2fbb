"""
Chat interaction probe.

Finds a chat-style input on a page, sends a short message and watches the
network for the AI response. From what comes back it derives the provider
(wire-format payload signatures beat URL inference), time to first token,
tokens per second and a guess at the serving model.

The probe never raises; a page without a chat box, or any interaction
failure, simply yields a ProbeResult without diagnostics.
"""
import asyncio
import logging
import math
import re
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

from stackprobe.browser import BrowserScanner
from stackprobe.browser_config import BrowserConfig, PROBE_CONFIG
from stackprobe.config import ScanConfig, default_config
from stackprobe.extractor import lower_headers
from stackprobe.models import ProbeDiagnostics
from stackprobe.signatures import (
    AI_COMPATIBLE_PATHS,
    AI_PROVIDER_DOMAINS,
    PAYLOAD_SIGNATURES,
    REASONING_MIN_TPS,
    REASONING_MIN_TTFT_MS,
    REASONING_MODEL_LABEL,
    SPEED_FINGERPRINTS,
    SpeedFingerprint,
)

logger = logging.getLogger(__name__)

CHAT_INPUT_SELECTORS = (
    'input[placeholder*="message" i]',
    'input[placeholder*="ask" i]',
    'input[placeholder*="chat" i]',
    'input[placeholder*="type" i]',
    'textarea[placeholder*="message" i]',
    'textarea[placeholder*="ask" i]',
    'textarea[placeholder*="chat" i]',
    '[data-testid*="chat" i] input',
    '[data-testid*="chat" i] textarea',
    '[class*="chat" i] input',
    '[class*="chat" i] textarea',
    '[role="textbox"]',
)

SEND_BUTTON_SELECTORS = (
    'button[type="submit"]',
    'button[aria-label*="send" i]',
    'button[aria-label*="submit" i]',
    '[data-testid*="send" i]',
    '[class*="send" i] button',
    'button:has(svg)',
)

STREAMING_CONTENT_TYPES = ("text/event-stream", "application/json")

BODY_READ_TIMEOUT = 5.0  # seconds per response body
MAX_OBSERVED_RESPONSES = 400
MAX_RESPONSE_TEXT_CHARS = 1_000_000

_PAYLOAD_PATTERNS = tuple((sig.provider, re.compile(sig.pattern)) for sig in PAYLOAD_SIGNATURES)


# ============================================================================
# Pure helpers
# ============================================================================

def approximate_token_count(text: str) -> int:
    """Rough token count: one token per four characters, rounded up."""
    return math.ceil(len(text) / 4)


def compute_tps(token_count: int, total_ms: float, ttft_ms: float) -> float:
    """Tokens per second over the generation window (total minus TTFT).

    Returns 0.0 when the generation window is empty or negative.
    """
    generation_ms = total_ms - ttft_ms
    if generation_ms <= 0:
        return 0.0
    return token_count / (generation_ms / 1000)


def infer_model(
    tps: float,
    ttft_ms: float,
    fingerprints: Sequence[SpeedFingerprint] = SPEED_FINGERPRINTS,
) -> Optional[str]:
    """Guess the serving model from streaming speed.

    A slow start followed by a fast stream (TTFT over 3s with TPS over 50)
    is reported as a reasoning model before the band table is consulted.
    Otherwise the first band with ``min_tps <= tps < max_tps`` wins.

    Returns:
        "Provider - model" label, the reasoning-model label, or None
    """
    if ttft_ms > REASONING_MIN_TTFT_MS and tps > REASONING_MIN_TPS:
        return REASONING_MODEL_LABEL
    for fp in fingerprints:
        if fp.min_tps <= tps < fp.max_tps:
            return f"{fp.provider} - {fp.model or 'Unknown Model'}"
    return None


def match_payload_signature(body: str) -> Optional[str]:
    """Provider whose wire format the body matches, or None."""
    for provider, pattern in _PAYLOAD_PATTERNS:
        if pattern.search(body):
            return provider
    return None


def provider_from_url(url: str) -> Optional[str]:
    """Provider named by an API hostname in the URL, else a compatible-API path label."""
    lowered = url.lower()
    for host, provider in AI_PROVIDER_DOMAINS:
        if host in lowered:
            return provider
    for fragment, label in AI_COMPATIBLE_PATHS:
        if fragment in lowered:
            return label
    return None


def is_streaming_response(content_type: Optional[str]) -> bool:
    content_type = (content_type or "").lower()
    return any(kind in content_type for kind in STREAMING_CONTENT_TYPES)


async def find_chat_input(page) -> Optional[str]:
    """First selector matching a visible chat-style input."""
    return await _first_visible(page, CHAT_INPUT_SELECTORS)


async def find_send_button(page) -> Optional[str]:
    """First selector matching a visible send button."""
    return await _first_visible(page, SEND_BUTTON_SELECTORS)


async def _first_visible(page, selectors: Sequence[str]) -> Optional[str]:
    for selector in selectors:
        try:
            element = await page.query_selector(selector)
            if element is not None and await element.is_visible():
                return selector
        except Exception as e:
            # Elements can detach between lookup and visibility check
            logger.debug(f"Selector {selector!r} failed: {e}")
    return None


# ============================================================================
# Probe
# ============================================================================

@dataclass
class ProbeResult:
    """What one interaction probe observed."""
    url: str
    chat_found: bool = False
    provider: Optional[str] = None
    inferred_model: Optional[str] = None
    diagnostics: Optional[ProbeDiagnostics] = None
    network_calls: List[Dict[str, Any]] = field(default_factory=list)
    payload_signatures: List[str] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def has_interaction(self) -> bool:
        return self.diagnostics is not None


class ResponseRecorder:
    """Collects (timestamp, response) pairs while the probe window is open."""

    def __init__(self, max_entries: int = MAX_OBSERVED_RESPONSES):
        self.max_entries = max_entries
        self.entries: List[Tuple[float, Any]] = []

    def on_response(self, response) -> None:
        if len(self.entries) < self.max_entries:
            self.entries.append((time.monotonic(), response))


class InteractionProbe:
    """
    Send one chat message through a page's UI and measure the AI response.

        probe = InteractionProbe()
        result = await probe.run("https://example.com")

    Args:
        config: Scan tunables (probe message, observation window, response cap)
        browser_config: Browser settings for the probe session
    """

    def __init__(self, config: Optional[ScanConfig] = None, browser_config: Optional[BrowserConfig] = None):
        self.config = config or default_config
        self.browser_config = browser_config or PROBE_CONFIG

    @property
    def hard_timeout(self) -> float:
        """Wall-clock ceiling for a whole probe run, in seconds."""
        return (
            self.browser_config.timeout / 1000
            + self.config.probe_settle_seconds
            + self.config.probe_window_seconds
            + BODY_READ_TIMEOUT * 2
        )

    async def run(self, url: str) -> ProbeResult:
        """Probe ``url``. Never raises."""
        logger.info(f"Interaction probe started: {url}")
        try:
            async with BrowserScanner(self.browser_config) as scanner:
                result = await asyncio.wait_for(self._probe(scanner, url), timeout=self.hard_timeout)
        except Exception as e:
            reason = str(e) or type(e).__name__
            logger.warning(f"Interaction probe failed for {url}: {reason}")
            return ProbeResult(url=url, error=reason)

        logger.info(
            f"Interaction probe complete: {url} (chat={result.chat_found}, provider={result.provider}, "
            f"model={result.inferred_model})"
        )
        return result

    async def _probe(self, scanner: BrowserScanner, url: str) -> ProbeResult:
        context = await scanner.new_context()
        try:
            page = await context.new_page()
            await page.goto(url, wait_until=self.browser_config.wait_until, timeout=self.browser_config.timeout)
            await page.wait_for_timeout(self.config.probe_settle_seconds * 1000)
            return await self.interact(page, url)
        finally:
            try:
                await context.close()
            except Exception as e:
                logger.debug(f"Error closing probe context: {e}")

    async def interact(self, page, url: str) -> ProbeResult:
        """Run the chat interaction on an already-loaded page."""
        result = ProbeResult(url=url)

        chat_input = await find_chat_input(page)
        if chat_input is None:
            logger.info(f"No chat input found on {url}")
            return result
        result.chat_found = True
        send_button = await find_send_button(page)
        logger.debug(f"Chat input {chat_input!r}, send button {send_button!r}")

        recorder = ResponseRecorder()
        page.on("response", recorder.on_response)

        start = time.monotonic()
        try:
            await page.fill(chat_input, self.config.probe_message)
            if send_button:
                await page.click(send_button)
            else:
                await page.keyboard.press("Enter")
            await page.wait_for_timeout(self.config.probe_window_seconds * 1000)
        except Exception as e:
            logger.info(f"Chat interaction failed on {url}: {e}")
        end = time.monotonic()

        first_token_at: Optional[float] = None
        url_provider: Optional[str] = None
        payload_provider: Optional[str] = None
        text_parts: List[str] = []
        text_len = 0

        for seen_at, response in recorder.entries:
            headers = lower_headers(response.headers)
            content_type = headers.get("content-type", "")
            try:
                method = response.request.method
            except Exception:
                method = "GET"
            result.network_calls.append({"url": response.url, "method": method, "contentType": content_type})

            host_provider = provider_from_url(response.url)
            if host_provider and (url_provider is None or not host_provider.endswith("-compatible")):
                url_provider = host_provider

            if not is_streaming_response(content_type):
                continue
            if first_token_at is None:
                first_token_at = seen_at

            body = await self._read_body(response)
            if not body:
                continue
            if text_len < MAX_RESPONSE_TEXT_CHARS:
                text_parts.append(body)
                text_len += len(body)

            signature = match_payload_signature(body)
            if signature:
                payload_provider = payload_provider or signature
                if signature not in result.payload_signatures:
                    result.payload_signatures.append(signature)

        # Wire format beats the API host
        result.provider = payload_provider or url_provider

        response_text = "".join(text_parts)
        token_count = approximate_token_count(response_text)
        total_ms = round((end - start) * 1000)
        ttft_ms = round((first_token_at - start) * 1000) if first_token_at is not None else 0
        tps = compute_tps(token_count, total_ms, ttft_ms)

        if token_count > 0:
            result.inferred_model = infer_model(tps, ttft_ms)
            result.diagnostics = ProbeDiagnostics(
                prompt_sent=self.config.probe_message,
                response_received=response_text[:self.config.probe_response_chars],
                ttft=ttft_ms,
                tps=round(tps),
                total_time=total_ms,
                token_count=token_count,
                chat_input_selector=chat_input,
                send_button_selector=send_button,
            )

        return result

    async def _read_body(self, response) -> str:
        try:
            return await asyncio.wait_for(response.text(), timeout=BODY_READ_TIMEOUT)
        except Exception as e:
            logger.debug(f"Could not read body of {response.url}: {e}")
            return ""
