"""Evidence extraction: raw page materials -> SignalBundle."""

import logging
from typing import Dict, List, Mapping, Optional
from urllib.parse import urlparse

from bs4 import BeautifulSoup

from stackprobe.models import BrowserSignals, SignalBundle

logger = logging.getLogger(__name__)

MAX_HTML_CHARS = 5 * 1024 * 1024


def hostname_of(url: str) -> str:
    """Hostname of a URL, or '' when it cannot be parsed."""
    try:
        return (urlparse(url).hostname or "").lower()
    except (ValueError, AttributeError):
        return ""


def path_of(url: str) -> str:
    try:
        return urlparse(url).path or ""
    except (ValueError, AttributeError):
        return ""


def lower_headers(headers: Optional[Mapping[str, str]]) -> Dict[str, str]:
    return {str(k).lower(): str(v) for k, v in (headers or {}).items()}


def split_cookies(set_cookie: Optional[str]) -> List[str]:
    """Split a Set-Cookie header value on commas.

    Commas inside Expires attributes are not respected; a date like
    "Wed, 21 Oct 2026" produces an extra fragment. Signature patterns are
    written to tolerate this.
    """
    if not set_cookie:
        return []
    return [part.strip() for part in set_cookie.split(",") if part.strip()]


def _soup(html: str) -> Optional[BeautifulSoup]:
    if not html:
        return None
    try:
        return BeautifulSoup(html, "html.parser")
    except Exception as e:
        logger.debug(f"HTML parse failed: {e}")
        return None


def extract_script_srcs(soup: Optional[BeautifulSoup]) -> List[str]:
    """Every <script src> value, in document order (duplicates kept)."""
    if soup is None:
        return []
    srcs = []
    for tag in soup.find_all("script", src=True):
        src = tag.get("src")
        if isinstance(src, str) and src.strip():
            srcs.append(src.strip())
    return srcs


def extract_meta(soup: Optional[BeautifulSoup]) -> Dict[str, str]:
    """Map of meta name/property -> content; later tags overwrite earlier ones."""
    if soup is None:
        return {}
    meta = {}
    for tag in soup.find_all("meta"):
        key = tag.get("name") or tag.get("property")
        content = tag.get("content")
        if key and content is not None:
            meta[key] = content
    return meta


def build_signal_bundle(
    html: str,
    headers: Optional[Mapping[str, str]],
    url: str,
    final_url: Optional[str] = None,
) -> SignalBundle:
    """Build a SignalBundle from one passive fetch.

    Args:
        html: Decoded page body ('' when nothing usable was fetched)
        headers: Response headers (any case)
        url: Requested URL
        final_url: URL after redirects, if different

    Returns:
        SignalBundle; never raises
    """
    html = (html or "")[:MAX_HTML_CHARS]
    normalized_headers = lower_headers(headers)
    soup = _soup(html)

    return SignalBundle(
        url=url,
        final_url=final_url or url,
        html=html,
        headers=normalized_headers,
        cookies=split_cookies(normalized_headers.get("set-cookie")),
        script_srcs=extract_script_srcs(soup),
        meta=extract_meta(soup),
        domain=hostname_of(final_url or url),
    )


def bundle_from_browser(signals: BrowserSignals) -> SignalBundle:
    """Build a SignalBundle from render-phase signals.

    Cookies come from the browser jar as name=value strings, meta keeps the
    last value seen per key, and the captured request URLs and inline script
    bodies feed the network/script_body rule types.
    """
    cookies = [f"{c.get('name', '')}={c.get('value', '')}" for c in signals.cookies]
    meta = {key: values[-1] for key, values in signals.meta.items() if values}

    return SignalBundle(
        url=signals.url,
        final_url=signals.final_url or signals.url,
        html=signals.html,
        headers=lower_headers(signals.headers),
        cookies=cookies,
        script_srcs=list(signals.script_srcs),
        meta=meta,
        domain=hostname_of(signals.final_url or signals.url),
        network_urls=[r.url for r in signals.requests],
        script_bodies=list(signals.inline_scripts),
    )
