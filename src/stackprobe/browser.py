"""
Render capture using Playwright.

BrowserScanner loads a page with JavaScript enabled and returns everything
it observed as BrowserSignals:

    async with BrowserScanner(RENDER_CONFIG) as scanner:
        signals = await scanner.collect("https://example.com")

Network traffic is recorded into a NetworkLog while the page loads and is
replayed into the signals only after the page settles, so nothing outside
the log is mutated by browser callbacks.
"""
import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, Iterator, List, Optional, Tuple

from playwright.async_api import async_playwright

from stackprobe.browser_config import BrowserConfig, RENDER_CONFIG
from stackprobe.extractor import hostname_of, lower_headers, path_of
from stackprobe.models import BrowserSignals, Confidence, NetworkRequest, NetworkResponse
from stackprobe.signatures import (
    AI_COMPATIBLE_PATHS,
    AI_GATEWAY_DOMAINS,
    AI_GATEWAY_SIGNATURES,
    AI_PROVIDER_DOMAINS,
    AI_PROVIDER_HEADERS,
    VERCEL_AI_PROVIDER_VALUES,
    WINDOW_HINTS,
)

logger = logging.getLogger(__name__)


# ============================================================================
# Network event log
# ============================================================================

@dataclass
class NetworkEvent:
    kind: str  # "request", "response" or "websocket"
    payload: Any


class NetworkLog:
    """Bounded, replayable record of a page's network activity.

    Requests and responses are each capped at ``max_entries``; websocket
    URLs share the same cap.
    """

    def __init__(self, max_entries: int = 400):
        self.max_entries = max_entries
        self._events: List[NetworkEvent] = []
        self._counts = {"request": 0, "response": 0, "websocket": 0}

    def _record(self, kind: str, payload: Any) -> None:
        if self._counts[kind] >= self.max_entries:
            return
        self._counts[kind] += 1
        self._events.append(NetworkEvent(kind, payload))

    def on_request(self, request) -> None:
        self._record("request", NetworkRequest(
            url=request.url,
            method=request.method,
            resource_type=request.resource_type,
        ))

    def on_response(self, response) -> None:
        headers = lower_headers(response.headers)
        self._record("response", NetworkResponse(
            url=response.url,
            status=response.status,
            content_type=headers.get("content-type"),
            headers=headers,
        ))

    def on_websocket(self, websocket) -> None:
        self._record("websocket", websocket.url)

    def attach(self, page) -> None:
        """Subscribe to a Playwright page's network events."""
        page.on("request", self.on_request)
        page.on("response", self.on_response)
        page.on("websocket", self.on_websocket)

    def __len__(self) -> int:
        return len(self._events)

    def replay(self) -> Iterator[NetworkEvent]:
        """Events in the order they were observed. Can be called repeatedly."""
        return iter(list(self._events))

    def apply_to(self, signals: BrowserSignals) -> BrowserSignals:
        """Fill the network fields of ``signals`` from the recorded events."""
        domains: Dict[str, None] = {}
        paths: Dict[str, None] = {}
        for event in self.replay():
            if event.kind == "request":
                signals.requests.append(event.payload)
            elif event.kind == "response":
                signals.responses.append(event.payload)
            elif event.kind == "websocket":
                signals.websockets.append(event.payload)
                continue
            domain = hostname_of(event.payload.url)
            path = path_of(event.payload.url)
            if domain:
                domains[domain] = None
            if path:
                paths[path] = None
        signals.domains = list(domains)
        signals.paths = list(paths)
        return signals


# ============================================================================
# In-page scripts
# ============================================================================

def window_hints_script(hints=WINDOW_HINTS) -> str:
    """Build the page.evaluate() function that checks every window hint."""
    checks = ",\n".join(
        f"    {json.dumps(hint.name)}: safe(() => ({hint.expression}))" for hint in hints
    )
    return (
        "() => {\n"
        "  const safe = (fn) => { try { return Boolean(fn()); } catch (e) { return false; } };\n"
        "  return {\n"
        f"{checks}\n"
        "  };\n"
        "}"
    )


WINDOW_HINTS_SCRIPT = window_hints_script()

SCRIPT_SRCS_SCRIPT = "els => els.map(e => e.src).filter(Boolean)"

INLINE_SCRIPTS_SCRIPT = "els => els.map(e => e.textContent || '').filter(t => t.trim().length > 0)"

META_SCRIPT = """els => {
  const out = {};
  for (const el of els) {
    const name = el.getAttribute('name') || el.getAttribute('property') || el.getAttribute('http-equiv');
    const content = el.getAttribute('content');
    if (!name || !content) continue;
    (out[name] = out[name] || []).push(content);
  }
  return out;
}"""

MAX_INLINE_SCRIPTS = 50
MAX_INLINE_SCRIPT_CHARS = 20_000


# ============================================================================
# Pure network / hint analysis
# ============================================================================

@dataclass
class NetworkAIDetection:
    """AI provider and gateway inferred from captured traffic."""
    provider: Optional[str] = None
    gateway: Optional[str] = None
    confidence: Confidence = Confidence.LOW


def detect_ai_from_network(signals: BrowserSignals) -> NetworkAIDetection:
    """Infer AI provider and gateway from domains, paths and response headers.

    Exact provider API hosts give High confidence, hosts that merely contain
    a provider's domain give Medium, and OpenAI/Anthropic-compatible API
    paths give Medium when nothing better was seen. Provider headers on any
    response (anthropic-version, openai-organization, x-vercel-ai-provider)
    override everything at High.
    """
    result = NetworkAIDetection()
    exact = dict(AI_PROVIDER_DOMAINS)

    for domain in signals.domains:
        if domain in exact:
            result.provider = exact[domain]
            result.confidence = Confidence.HIGH
            break

    if result.provider is None:
        for domain in signals.domains:
            partial = next(
                (name for host, name in AI_PROVIDER_DOMAINS if host.replace("api.", "", 1) in domain),
                None,
            )
            if partial:
                result.provider = partial
                result.confidence = Confidence.MEDIUM
                break

    gateways = dict(AI_GATEWAY_DOMAINS)
    result.gateway = next((gateways[d] for d in signals.domains if d in gateways), None)

    if result.provider is None:
        for path in signals.paths:
            label = next((name for fragment, name in AI_COMPATIBLE_PATHS if fragment in path), None)
            if label:
                result.provider = label
                result.confidence = Confidence.MEDIUM
                break

    for signature in AI_GATEWAY_SIGNATURES:
        if any(signature.header_key in resp.headers for resp in signals.responses):
            result.gateway = signature.name
            break

    for resp in signals.responses:
        vercel = resp.headers.get("x-vercel-ai-provider", "").lower()
        if vercel:
            named = next((name for needle, name in VERCEL_AI_PROVIDER_VALUES if needle in vercel), None)
            if named:
                result.provider = named
                result.confidence = Confidence.HIGH
        for header_key, name in AI_PROVIDER_HEADERS:
            if header_key in resp.headers:
                result.provider = name
                result.confidence = Confidence.HIGH
                break

    return result


def detect_framework_from_hints(hints: Dict[str, bool]) -> Tuple[Optional[str], Confidence]:
    """First window hint present, in priority order, names the framework.

    Returns:
        (framework, High) or (None, Low) when no hint is present
    """
    for hint in WINDOW_HINTS:
        if hints.get(hint.name):
            return hint.framework, Confidence.HIGH
    return None, Confidence.LOW


# ============================================================================
# Browser scanner
# ============================================================================

class BrowserScanner:
    """
    Playwright-based render capture.

    Designed as an async context manager that owns one browser for its
    lifetime; the browser is closed on every exit path. Pass ``browser`` to
    reuse an already-launched Playwright browser (it is then not closed here).
    """

    def __init__(self, config: Optional[BrowserConfig] = None, browser=None):
        self._config = config or RENDER_CONFIG
        self._playwright = None
        self._browser = browser
        self._owns_browser = browser is None

    async def __aenter__(self) -> "BrowserScanner":
        if self._browser is not None:
            return self

        logger.info(f"Launching {self._config.browser_type} browser (headless={self._config.headless})")
        self._playwright = await async_playwright().start()
        try:
            launcher = getattr(self._playwright, self._config.browser_type)
            launch_options = {"headless": self._config.headless}
            if self._config.launch_args:
                launch_options["args"] = self._config.launch_args
            self._browser = await launcher.launch(**launch_options)
        except Exception:
            await self._playwright.stop()
            self._playwright = None
            raise
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def close(self) -> None:
        if self._browser is not None and self._owns_browser:
            try:
                await self._browser.close()
            except Exception as e:
                logger.warning(f"Error closing browser: {e}")
        if self._owns_browser:
            self._browser = None

        if self._playwright is not None:
            try:
                await self._playwright.stop()
            except Exception as e:
                logger.warning(f"Error stopping Playwright: {e}")
            self._playwright = None

    async def new_context(self):
        """Fresh, isolated browser context using the configured user agent and viewport."""
        if self._browser is None:
            raise RuntimeError(
                "Browser is not running. Use BrowserScanner as an async context manager: "
                "async with BrowserScanner(config) as scanner:"
            )
        return await self._browser.new_context(
            user_agent=self._config.get_user_agent(),
            viewport=self._config.viewport,
        )

    async def _block_resources(self, page) -> None:
        blocked = set(self._config.block_resources)

        async def handler(route):
            if route.request.resource_type in blocked:
                await route.abort()
            else:
                await route.continue_()

        await page.route("**/*", handler)

    async def collect(self, url: str) -> BrowserSignals:
        """Load ``url`` and collect render-phase signals.

        Never raises: navigation errors, timeouts and script failures return
        empty signals with ``error`` set.
        """
        start = time.monotonic()
        log = NetworkLog(self._config.max_network_entries)
        context = None

        try:
            context = await self.new_context()
            page = await context.new_page()
            log.attach(page)
            if self._config.block_resources:
                await self._block_resources(page)

            logger.info(f"Rendering: {url}")
            response = await page.goto(
                url,
                wait_until=self._config.wait_until,
                timeout=self._config.timeout,
            )
            if self._config.settle_delay_ms:
                await page.wait_for_timeout(self._config.settle_delay_ms)

            html = await page.content()
            if len(html) > self._config.max_html_chars:
                html = html[:self._config.max_html_chars]

            script_srcs = await page.eval_on_selector_all("script[src]", SCRIPT_SRCS_SCRIPT)
            inline_scripts = await page.eval_on_selector_all("script:not([src])", INLINE_SCRIPTS_SCRIPT)
            meta = await page.eval_on_selector_all("meta", META_SCRIPT)
            window_hints = await page.evaluate(WINDOW_HINTS_SCRIPT)
            cookies = await context.cookies()

            signals = BrowserSignals(
                url=url,
                final_url=page.url,
                status=response.status if response else None,
                headers=lower_headers(response.headers) if response else {},
                html=html,
                script_srcs=list(script_srcs or []),
                inline_scripts=[s[:MAX_INLINE_SCRIPT_CHARS] for s in (inline_scripts or [])[:MAX_INLINE_SCRIPTS]],
                meta=dict(meta or {}),
                cookies=[
                    {"name": c.get("name", ""), "value": c.get("value", ""),
                     "domain": c.get("domain"), "path": c.get("path")}
                    for c in (cookies or [])
                ],
                window_hints={k: bool(v) for k, v in (window_hints or {}).items()},
            )
            log.apply_to(signals)

            elapsed = time.monotonic() - start
            logger.info(
                f"Render complete: {url} ({len(signals.requests)} requests, "
                f"{len(html)} chars HTML, {elapsed:.2f}s)"
            )
            return signals

        except Exception as e:
            logger.warning(f"Render failed for {url}: {e}")
            return BrowserSignals(url=url, final_url=url, error=str(e) or type(e).__name__)

        finally:
            if context is not None:
                try:
                    await context.close()
                except Exception as e:
                    logger.debug(f"Error closing context: {e}")


async def render_capture(url: str, config: Optional[BrowserConfig] = None) -> BrowserSignals:
    """Launch a browser, collect render signals for one URL and tear it down.

    Launch failures are absorbed like any other render error.
    """
    try:
        async with BrowserScanner(config or RENDER_CONFIG) as scanner:
            return await scanner.collect(url)
    except Exception as e:
        logger.error(f"Browser launch failed for {url}: {e}")
        return BrowserSignals(url=url, final_url=url, error=str(e) or type(e).__name__)
