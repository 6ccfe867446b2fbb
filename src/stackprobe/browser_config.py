"""
Browser configuration for the render and probe phases.

This module provides a validated Pydantic configuration model for the
headless browser settings and pre-configured instances for the two dynamic
phases.
"""
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, Field


DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)


class BrowserConfig(BaseModel):
    """
    Configuration for the Playwright-driven BrowserScanner and InteractionProbe.

    All fields are validated by Pydantic to ensure type safety and valid values.
    """

    headless: bool = Field(
        default=True,
        description="Run browser in headless mode (no visible UI)"
    )

    browser_type: Literal["chromium", "firefox", "webkit"] = Field(
        default="chromium",
        description="Browser engine to launch"
    )

    timeout: int = Field(
        default=15000,
        description="Navigation timeout in milliseconds",
        ge=1000,
        le=300000
    )

    wait_until: Literal["load", "domcontentloaded", "networkidle", "commit"] = Field(
        default="domcontentloaded",
        description="When to consider navigation complete"
    )

    settle_delay_ms: int = Field(
        default=1500,
        description="Extra wait after navigation so client-side code can run",
        ge=0,
        le=30000
    )

    max_network_entries: int = Field(
        default=400,
        description="Cap on captured requests and on captured responses",
        ge=1
    )

    max_html_chars: int = Field(
        default=2_000_000,
        description="Rendered HTML is truncated to this many characters",
        ge=1
    )

    block_resources: List[str] = Field(
        default_factory=lambda: ["image", "font", "media"],
        description="Resource types to abort (e.g., 'image', 'font', 'media')"
    )

    user_agent: Optional[str] = Field(
        default=None,
        description="Custom user agent. Falls back to a desktop Chrome string."
    )

    viewport: Dict[str, int] = Field(
        default_factory=lambda: {"width": 1280, "height": 800},
        description="Viewport used for every new context"
    )

    launch_args: List[str] = Field(
        default_factory=lambda: ["--no-sandbox", "--disable-setuid-sandbox"],
        description="Additional browser launch arguments"
    )

    class Config:
        """Pydantic model configuration."""
        frozen = False
        validate_assignment = True

    def get_user_agent(self) -> str:
        """Get the user agent to use for this config."""
        return self.user_agent or DEFAULT_USER_AGENT


# --- Pre-configured Instances ---

RENDER_CONFIG = BrowserConfig()
"""
Render capture configuration.

Blocks images, fonts and media, waits for DOM content plus a short settle delay.
"""

PROBE_CONFIG = BrowserConfig(
    settle_delay_ms=2000,
    block_resources=[],
)
"""
Interaction probe configuration.

Nothing is blocked so the chat widget renders exactly as a visitor sees it.
"""
