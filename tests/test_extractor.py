import threading
import time

import pytest
from playwright.sync_api import Error as PlaywrightError

from crossportal import extractor as extractor_module
from crossportal.config import Settings
from crossportal.errors import ExtractionError
from crossportal.extractor import ExtractionOutcome, PortalExtractor, is_blocked
from crossportal.portals import GenericAdapter, IdealistaAdapter


LISTING_HTML = """
<html><body>
  <h1 class="main-info__title-main">Bilocale in Via Padova, 12</h1>
  <span class="info-data-price">250.000 €</span>
</body></html>
"""
REVEALED_HTML = LISTING_HTML.replace("</body>", '<a class="phone-owner-link">333 1234567</a></body>')
BLOCK_HTML = "<html><body>Please complete the CAPTCHA to continue</body></html>"


class FakeLocator:
    def __init__(self, page, selector):
        self.page = page
        self.selector = selector

    @property
    def first(self):
        return self

    def is_visible(self, timeout=None):
        return self.selector in self.page.visible

    def click(self):
        self.page.clicks.append(self.selector)
        if self.selector in self.page.reveal_selectors:
            self.page.revealed = True


class FakeMouse:
    def __init__(self):
        self.moves = 0

    def move(self, x, y, steps=1):
        self.moves += 1

    def wheel(self, dx, dy):
        pass


class FakePage:
    """Serves the given HTML snapshots, one per load, the last one repeating."""

    def __init__(self, loads, visible=(), reveal_selectors=(), revealed_html=None, goto_error=None):
        self.loads = list(loads)
        self.load_index = 0
        self.visible = set(visible)
        self.reveal_selectors = set(reveal_selectors)
        self.revealed_html = revealed_html
        self.revealed = False
        self.goto_error = goto_error
        self.clicks = []
        self.reloads = 0
        self.mouse = FakeMouse()

    def goto(self, url, wait_until=None, timeout=None):
        if self.goto_error:
            raise self.goto_error

    def reload(self, wait_until=None, timeout=None):
        self.reloads += 1
        self.load_index = min(self.load_index + 1, len(self.loads) - 1)

    def locator(self, selector):
        return FakeLocator(self, selector)

    def content(self):
        if self.revealed and self.revealed_html:
            return self.revealed_html
        return self.loads[self.load_index]

    def set_default_timeout(self, timeout):
        pass


class FakeContext:
    def __init__(self, page):
        self.page = page
        self.init_scripts = []

    def add_init_script(self, script):
        self.init_scripts.append(script)

    def new_page(self):
        return self.page


class FakeBrowser:
    def __init__(self, page):
        self.context = FakeContext(page)
        self.context_options = None
        self.closed = False

    def new_context(self, **options):
        self.context_options = options
        return self.context

    def close(self):
        self.closed = True


class FakePlaywright:
    def __init__(self, browser):
        self.browser = browser
        self.chromium = self
        self.launch_options = None

    def launch(self, **options):
        self.launch_options = options
        return self.browser

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False


@pytest.fixture
def sleeps(monkeypatch):
    calls = []
    monkeypatch.setattr(extractor_module.time, "sleep", lambda s: calls.append(s))
    monkeypatch.setattr(extractor_module, "HAS_STEALTH", False)
    return calls


@pytest.fixture
def extractor():
    return PortalExtractor(Settings(settle_ms=0))


def _install_browser(monkeypatch, page):
    playwright = FakePlaywright(FakeBrowser(page))
    monkeypatch.setattr(extractor_module, "sync_playwright", lambda: playwright)
    return playwright


def test_is_blocked():
    assert is_blocked(BLOCK_HTML)
    assert is_blocked("<p>Abbiamo rilevato traffico insolito</p>")
    assert not is_blocked(LISTING_HTML)
    assert not is_blocked(None)


def test_block_page_is_reloaded_once(extractor, sleeps):
    page = FakePage([BLOCK_HTML, LISTING_HTML])
    html = extractor.load_listing(page, GenericAdapter(), "https://example.com/1")
    assert page.reloads == 1
    assert html == LISTING_HTML
    assert any(3.0 <= s <= 5.0 for s in sleeps)


def test_persistent_block_is_not_retried_again(extractor, sleeps):
    page = FakePage([BLOCK_HTML])
    html = extractor.load_listing(page, GenericAdapter(), "https://example.com/1")
    assert page.reloads == 1
    assert html == BLOCK_HTML


def test_clean_page_is_not_reloaded(extractor, sleeps):
    page = FakePage([LISTING_HTML])
    extractor.load_listing(page, GenericAdapter(), "https://example.com/1")
    assert page.reloads == 0
    assert page.mouse.moves == 2


def test_first_visible_consent_button_wins(extractor, sleeps):
    page = FakePage([LISTING_HTML], visible={'button:has-text("Accetta")', '#didomi-notice-agree-button'})
    extractor.load_listing(page, IdealistaAdapter(), "https://www.idealista.it/immobile/1/")
    assert page.clicks == ['#didomi-notice-agree-button']


def test_missing_consent_banner_is_not_an_error(extractor, sleeps):
    page = FakePage([LISTING_HTML])
    assert extractor.load_listing(page, IdealistaAdapter(), "https://www.idealista.it/immobile/1/") == LISTING_HTML
    assert page.clicks == []


def test_phone_reveal_rereads_page(extractor, sleeps):
    page = FakePage(
        [LISTING_HTML],
        visible={'a.see-phones-btn'},
        reveal_selectors={'a.see-phones-btn'},
        revealed_html=REVEALED_HTML,
    )
    html = extractor.load_listing(page, IdealistaAdapter(), "https://www.idealista.it/immobile/1/")
    assert html == REVEALED_HTML
    assert 'a.see-phones-btn' in page.clicks


def test_extract_parses_with_portal_adapter(monkeypatch, sleeps):
    page = FakePage(
        [LISTING_HTML],
        visible={'a.see-phones-btn'},
        reveal_selectors={'a.see-phones-btn'},
        revealed_html=REVEALED_HTML,
    )
    playwright = _install_browser(monkeypatch, page)
    settings = Settings(settle_ms=0, headless=False, user_agents=["TestAgent/1.0"], default_city="Torino")

    prop = PortalExtractor(settings).extract("https://www.idealista.it/immobile/1/")

    assert prop.portal_source == "Idealista"
    assert prop.address == "Bilocale in Via Padova, 12"
    assert prop.price == 250000
    assert prop.city == "Torino"
    assert prop.owner_phone == "3331234567"
    assert prop.has_web_contact is False

    browser = playwright.browser
    assert browser.closed
    assert playwright.launch_options["headless"] is False
    assert "--disable-blink-features=AutomationControlled" in playwright.launch_options["args"]
    assert browser.context_options["user_agent"] == "TestAgent/1.0"
    assert browser.context_options["locale"] == "it-IT"
    assert browser.context.init_scripts


def test_navigation_failure_raises_and_closes_browser(monkeypatch, extractor, sleeps):
    page = FakePage([LISTING_HTML], goto_error=PlaywrightError("net::ERR_NAME_NOT_RESOLVED"))
    playwright = _install_browser(monkeypatch, page)

    with pytest.raises(ExtractionError) as exc_info:
        extractor.extract("https://www.idealista.it/immobile/1/")

    assert exc_info.value.url == "https://www.idealista.it/immobile/1/"
    assert isinstance(exc_info.value.__cause__, PlaywrightError)
    assert playwright.browser.closed


def test_extract_many_keeps_order_and_reports_failures(monkeypatch, extractor):
    def fake_extract(url):
        if "bad" in url:
            raise ExtractionError(url, "Could not load listing")
        return GenericAdapter().parse(LISTING_HTML, url)

    monkeypatch.setattr(extractor, "extract", fake_extract)
    urls = ["https://example.com/a", "https://example.com/bad", "https://example.com/c"]

    outcomes = extractor.extract_many(urls, max_workers=2)

    assert [o.url for o in outcomes] == urls
    assert [o.ok for o in outcomes] == [True, False, True]
    assert outcomes[1].listing is None
    assert "https://example.com/bad" in outcomes[1].error


def test_extraction_outcome_ok():
    listing = GenericAdapter().parse(LISTING_HTML, "https://example.com/a")
    assert ExtractionOutcome(url="https://example.com/a", listing=listing).ok
    failed = ExtractionOutcome(url="https://example.com/b", error="Could not load listing")
    assert not failed.ok
    assert failed.listing is None


def test_extract_many_reports_unexpected_errors(monkeypatch, extractor):
    def fake_extract(url):
        if "broken" in url:
            raise RuntimeError("adapter crashed")
        return GenericAdapter().parse(LISTING_HTML, url)

    monkeypatch.setattr(extractor, "extract", fake_extract)
    urls = ["https://example.com/broken", "https://example.com/a"]

    outcomes = extractor.extract_many(urls, max_workers=2)

    assert [o.ok for o in outcomes] == [False, True]
    assert outcomes[0].error == "RuntimeError: adapter crashed"


def test_extract_many_bounds_open_browsers(monkeypatch, extractor):
    lock = threading.Lock()
    state = {"running": 0, "peak": 0}

    def fake_extract(url):
        with lock:
            state["running"] += 1
            state["peak"] = max(state["peak"], state["running"])
        time.sleep(0.05)
        with lock:
            state["running"] -= 1
        return GenericAdapter().parse(LISTING_HTML, url)

    monkeypatch.setattr(extractor, "extract", fake_extract)
    urls = [f"https://example.com/{i}" for i in range(8)]

    outcomes = extractor.extract_many(urls, max_workers=3)

    assert all(o.ok for o in outcomes)
    assert 1 <= state["peak"] <= 3
