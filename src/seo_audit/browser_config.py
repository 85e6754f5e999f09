"""
Browser configuration for the worker pool and feature extractor.

This module provides a validated Pydantic configuration model for all
browser-related settings.
"""
from typing import Literal

from pydantic import BaseModel, Field

from seo_audit.config import PipelineConfig


class BrowserConfig(BaseModel):
    """
    Configuration for the Playwright-backed worker pool.

    All fields are validated by Pydantic to ensure type safety and valid values.
    """

    headless: bool = Field(
        default=True,
        description="Run browser in headless mode (no visible UI)"
    )

    no_sandbox: bool = Field(
        default=False,
        description="Launch Chromium with --no-sandbox. Only for controlled environments such as CI containers."
    )

    browser_type: Literal["chromium", "firefox", "webkit"] = Field(
        default="chromium",
        description="Browser engine to use"
    )

    navigation_timeout_ms: int = Field(
        default=30000,
        description="Default navigation timeout in milliseconds",
        ge=1000,
        le=300000
    )

    wait_until: Literal["load", "domcontentloaded", "networkidle", "commit"] = Field(
        default="load",
        description="When to consider navigation complete"
    )

    user_agent: str = Field(
        default="SEO-Audit-Bot/1.0",
        description="User agent sent with every request"
    )

    viewport_width: int = Field(default=1366, ge=320, le=3840)
    viewport_height: int = Field(default=768, ge=320, le=2160)

    @property
    def launch_args(self) -> list[str]:
        """Chromium command line flags for this configuration."""
        args = ["--disable-dev-shm-usage", "--disable-gpu", "--no-first-run"]
        if self.no_sandbox:
            args.extend(["--no-sandbox", "--disable-setuid-sandbox"])
        return args

    @classmethod
    def from_pipeline_config(cls, config: PipelineConfig) -> "BrowserConfig":
        return cls(
            headless=config.browser_headless,
            no_sandbox=config.browser_no_sandbox,
            navigation_timeout_ms=int(config.navigation_timeout * 1000),
            user_agent=config.user_agent,
        )
