"""
Listing URL -> ExtractedProperty, through a headless Chromium.

Each call launches its own browser (no pooling, no shared state), then:

    navigate -> accept cookies -> two human-like scroll/mouse moves
             -> block check (one reload after 3-5s if blocked)
             -> reveal phone -> parse with the portal adapter

Optional steps never fail the extraction; a failed launch or navigation
raises ExtractionError once the browser is closed. Use extract_many() to
process several URLs with a bounded number of browsers.
"""

from __future__ import annotations

import logging
import random
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from typing import Optional

from playwright.sync_api import Error as PlaywrightError, Page, sync_playwright

from .config import Settings
from .errors import ExtractionError
from .models import ExtractedProperty
from .portals import PortalAdapter, PortalRegistry, default_registry

# Stealth patches for the page, when the package is installed
try:
    from undetected_playwright import stealth_sync
    HAS_STEALTH = True
except ImportError:
    HAS_STEALTH = False


logger = logging.getLogger(__name__)

# ============================================================================
# CONSTANTS
# ============================================================================

BROWSER_ARGS = [
    '--disable-blink-features=AutomationControlled',
    '--no-sandbox',
    '--disable-dev-shm-usage',
]

VIEWPORT = {"width": 1920, "height": 1080}

# Substrings of block / challenge pages
BLOCK_MARKERS = [
    'captcha',
    'unusual traffic',
    'traffico insolito',
    'access denied',
    'accesso negato',
    'are you a robot',
    'sei un robot',
    'verify you are a human',
    'datadome',
    'attention required',
]

# Tried after the portal's own selectors
COMMON_CONSENT_SELECTORS = [
    '#didomi-notice-agree-button',
    '#onetrust-accept-btn-handler',
    '#iubenda-cs-accept-btn',
    'button:has-text("Accetta tutti")',
    'button:has-text("Accetta")',
    'button:has-text("Accetto")',
    'button:has-text("Accept All")',
    'button:has-text("Accept")',
]

# Hide the usual headless giveaways before any page script runs
STEALTH_INIT_SCRIPT = """
Object.defineProperty(navigator, 'webdriver', { get: () => undefined });
Object.defineProperty(navigator, 'languages', { get: () => ['it-IT', 'it', 'en-US', 'en'] });
Object.defineProperty(navigator, 'plugins', { get: () => [1, 2, 3, 4, 5] });
window.chrome = window.chrome || { runtime: {} };
"""

CONSENT_VISIBLE_TIMEOUT_MS = 1500
REVEAL_VISIBLE_TIMEOUT_MS = 2000
RETRY_WAIT_SECONDS = (3.0, 5.0)


def is_blocked(html: str) -> bool:
    lowered = (html or "").lower()
    return any(marker in lowered for marker in BLOCK_MARKERS)


@dataclass
class ExtractionOutcome:
    """Result of one URL of a batch: the listing, or why it failed."""
    url: str
    listing: Optional[ExtractedProperty] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.listing is not None


class PortalExtractor:
    """Scrapes listing pages of the supported portals."""

    def __init__(self, settings: Optional[Settings] = None, registry: Optional[PortalRegistry] = None):
        self.settings = settings or Settings()
        self.registry = registry or default_registry()
        self.logger = logging.getLogger(__name__)

    # ------------------------------------------------------------------
    # Browser steps
    # ------------------------------------------------------------------

    def _click_first_visible(self, page: Page, selectors: list[str], timeout_ms: int) -> Optional[str]:
        """Click the first visible element among ``selectors``; returns the selector used."""
        for selector in selectors:
            try:
                btn = page.locator(selector).first
                if btn.is_visible(timeout=timeout_ms):
                    btn.click()
                    return selector
            except PlaywrightError:
                continue
        return None

    def _accept_cookies(self, page: Page, adapter: PortalAdapter) -> bool:
        selectors = adapter.consent_selectors + [
            s for s in COMMON_CONSENT_SELECTORS if s not in adapter.consent_selectors
        ]
        used = self._click_first_visible(page, selectors, CONSENT_VISIBLE_TIMEOUT_MS)
        if used:
            self.logger.debug(f"Cookie banner accepted via {used}")
            time.sleep(0.5)
            return True
        return False

    def _simulate_human(self, page: Page) -> None:
        """Two random mouse moves with a scroll each, at human-ish pace."""
        for _ in range(2):
            try:
                page.mouse.move(
                    random.randint(100, VIEWPORT["width"] - 200),
                    random.randint(100, VIEWPORT["height"] - 200),
                    steps=random.randint(5, 15),
                )
                page.mouse.wheel(0, random.randint(200, 700))
            except PlaywrightError as e:
                self.logger.debug(f"Human simulation step failed: {e}")
            time.sleep(random.uniform(0.4, 1.2))

    def _reveal_phone(self, page: Page, adapter: PortalAdapter) -> bool:
        if not adapter.phone_reveal_selectors:
            return False
        used = self._click_first_visible(page, adapter.phone_reveal_selectors, REVEAL_VISIBLE_TIMEOUT_MS)
        if used:
            self.logger.debug(f"Phone reveal clicked via {used}")
            time.sleep(1.5)
            return True
        return False

    def _settle(self, page: Page, adapter: PortalAdapter) -> str:
        time.sleep(self.settings.settle_ms / 1000)
        self._accept_cookies(page, adapter)
        self._simulate_human(page)
        return page.content()

    def load_listing(self, page: Page, adapter: PortalAdapter, url: str) -> str:
        """Drive an open page to the listing and return the HTML to scrape.

        Navigation errors propagate; everything after the first load is best effort.
        """
        page.goto(url, wait_until="domcontentloaded", timeout=self.settings.nav_timeout_ms)
        html = self._settle(page, adapter)

        if is_blocked(html):
            wait = random.uniform(*RETRY_WAIT_SECONDS)
            self.logger.warning(f"Block page on {url}, reloading in {wait:.1f}s")
            time.sleep(wait)
            page.reload(wait_until="domcontentloaded", timeout=self.settings.nav_timeout_ms)
            html = self._settle(page, adapter)
            if is_blocked(html):
                self.logger.warning(f"Still blocked on {url}, scraping what is there")

        if self._reveal_phone(page, adapter):
            html = page.content()
        return html

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def extract(self, url: str) -> ExtractedProperty:
        """Scrape one listing URL."""
        adapter = self.registry.for_url(url)
        self.logger.info(f"Extracting from {adapter.name}: {url}")

        with sync_playwright() as p:
            browser = None
            try:
                browser = p.chromium.launch(headless=self.settings.headless, args=BROWSER_ARGS)
                context = browser.new_context(
                    user_agent=random.choice(self.settings.user_agents),
                    viewport=VIEWPORT,
                    locale="it-IT",
                )
                context.add_init_script(STEALTH_INIT_SCRIPT)
                page = context.new_page()
                page.set_default_timeout(self.settings.nav_timeout_ms)
                if HAS_STEALTH:
                    stealth_sync(page)

                html = self.load_listing(page, adapter, url)
            except PlaywrightError as e:
                self.logger.error(f"Error extracting from {url}: {e}")
                raise ExtractionError(url, "Could not load listing") from e
            finally:
                if browser is not None:
                    try:
                        browser.close()
                    except PlaywrightError as e:
                        self.logger.debug(f"Browser close failed: {e}")

        result = adapter.parse(html, url, city=self.settings.default_city)
        self.logger.info(f"Extracted: {result.address}, €{result.price}, {result.size}mq")
        return result

    def extract_many(self, urls: list[str], max_workers: Optional[int] = None) -> list[ExtractionOutcome]:
        """Scrape several URLs with at most ``max_workers`` browsers open at once.

        Outcomes come back in the order of ``urls``; failures are reported, not raised.
        """
        workers = max(1, min(max_workers or self.settings.max_concurrent_browsers, len(urls) or 1))
        outcomes: dict[str, ExtractionOutcome] = {}

        with ThreadPoolExecutor(max_workers=workers) as pool:
            futures = {pool.submit(self.extract, url): url for url in dict.fromkeys(urls)}
            for future in as_completed(futures):
                url = futures[future]
                try:
                    outcomes[url] = ExtractionOutcome(url=url, listing=future.result())
                except ExtractionError as e:
                    self.logger.warning(f"Failed: {e}")
                    outcomes[url] = ExtractionOutcome(url=url, error=str(e))
                except Exception as e:
                    self.logger.exception(f"Unexpected error extracting {url}")
                    outcomes[url] = ExtractionOutcome(url=url, error=f"{type(e).__name__}: {e}")

        return [outcomes[url] for url in urls]
