"""
Per-portal scraping rules.

Each PortalAdapter knows which hosts it serves, which buttons accept the
cookie banner and reveal the advertiser's phone, and how to read the listing
fields out of the rendered HTML. Fields are read from priority lists of CSS
selectors: the first selector yielding non-empty text wins. Missing fields
are left empty, never raised.

Adapters only parse HTML; driving the browser is the extractor's job.
"""

from __future__ import annotations

import logging
import re
from typing import Iterable, Optional

from bs4 import BeautifulSoup

from .models import ADDRESS_PLACEHOLDER, ExtractedProperty
from .normalize import (
    PORTAL_HOSTS,
    PORTAL_OTHER,
    clean_price,
    clean_size,
    extract_emails,
    extract_phone_numbers,
    parse_int,
)


logger = logging.getLogger(__name__)

PRICE_TEXT_PATTERN = re.compile(r'€\s*([\d.,]+)')
SIZE_TEXT_PATTERN = re.compile(r'(\d{1,3}(?:\.\d{3})+|\d+)\s*m[²q2]', re.IGNORECASE)
STREET_TEXT_PATTERN = re.compile(
    r"\b((?:Via|Viale|Corso|Piazza|Piazzale|Largo|Vicolo)\s+[A-Za-zÀ-ÿ'\. ]+?(?:\s*,?\s*\d+(?:/[A-Za-z])?)?)(?=[,\n]|\s{2}|$)"
)
FLOOR_AFTER_PATTERN = re.compile(r'piano\s*:?\s*([\w°º]+)', re.IGNORECASE)
FLOOR_BEFORE_PATTERN = re.compile(r'([\w°º]+)\s+piano', re.IGNORECASE)

# Emails belonging to the portals themselves (privacy@, support@, ...)
PORTAL_EMAIL_DOMAINS = tuple(host for host, _ in PORTAL_HOSTS)


def _text(el) -> str:
    if el is None:
        return ""
    return el.get_text(" ", strip=True)


def first_text(soup: BeautifulSoup, selectors: Iterable[str], min_length: int = 1) -> str:
    """Text of the first element, over the selectors in order, at least ``min_length`` long."""
    for selector in selectors:
        for el in soup.select(selector):
            text = _text(el)
            if len(text) >= min_length:
                return text
    return ""


def parse_floor(text: str) -> Optional[str]:
    """Floor label out of a feature text ("Piano 3", "2º piano con ascensore")."""
    match = FLOOR_AFTER_PATTERN.search(text)
    if match and match.group(1).lower() not in ("con", "senza"):
        return match.group(1)
    match = FLOOR_BEFORE_PATTERN.search(text)
    if match:
        return match.group(1)
    return None


class PortalAdapter:
    """Scraping rules shared by all portals; subclasses override the selector lists."""

    name = PORTAL_OTHER
    hosts: tuple[str, ...] = ()

    consent_selectors: list[str] = []
    phone_reveal_selectors: list[str] = []

    address_selectors = ['h1']
    price_selectors: list[str] = []
    description_selectors = ['p']
    description_min_length = 100
    owner_selectors: list[str] = []
    phone_selectors = ['[data-phone]', 'a[href^="tel:"]']
    feature_selectors: list[str] = []
    image_selectors: list[str] = []
    image_url_markers: tuple[str, ...] = ()

    # Keywords of the feature list items
    size_keywords = ('m²', 'mq', 'superficie')
    bedroom_keywords = ('camer', 'local', 'stanz')
    bathroom_keywords = ('bagn',)
    floor_keywords = ('piano',)

    def matches(self, url: str) -> bool:
        lowered = url.lower()
        return any(host in lowered for host in self.hosts)

    # ------------------------------------------------------------------
    # Fields
    # ------------------------------------------------------------------

    def _address(self, soup: BeautifulSoup, body_text: str) -> str:
        return first_text(soup, self.address_selectors)

    def _price(self, soup: BeautifulSoup, body_text: str) -> Optional[int]:
        price = clean_price(first_text(soup, self.price_selectors))
        if price is None:
            match = PRICE_TEXT_PATTERN.search(body_text)
            if match:
                price = clean_price(match.group(1))
        return price

    def _features(self, soup: BeautifulSoup) -> dict:
        """Size, rooms, bathrooms and floor from the feature list items."""
        features: dict = {}
        for selector in self.feature_selectors:
            for el in soup.select(selector):
                text = _text(el).lower()
                if not text:
                    continue
                if 'size' not in features and any(k in text for k in self.size_keywords):
                    features['size'] = clean_size(text)
                elif 'bathrooms' not in features and any(k in text for k in self.bathroom_keywords):
                    features['bathrooms'] = parse_int(text)
                elif 'bedrooms' not in features and any(k in text for k in self.bedroom_keywords):
                    features['bedrooms'] = parse_int(text)
                if 'floor' not in features and any(k in text for k in self.floor_keywords):
                    floor = parse_floor(text)
                    if floor:
                        features['floor'] = floor
        return features

    def _dom_phone(self, soup: BeautifulSoup) -> Optional[str]:
        """Phone shown in a dedicated element (after the reveal click, if any)."""
        for selector in self.phone_selectors:
            for el in soup.select(selector):
                raw = el.get('data-phone') or ""
                href = el.get('href') or ""
                if not raw and href.startswith('tel:'):
                    raw = href[len('tel:'):]
                if not raw:
                    raw = _text(el)
                digits = re.sub(r'\D', '', raw)
                if digits.startswith('0039'):
                    digits = digits[4:]
                elif digits.startswith('39') and len(digits) > 10:
                    digits = digits[2:]
                if len(digits) >= 6:
                    return digits
        return None

    def _email(self, soup: BeautifulSoup, body_text: str) -> Optional[str]:
        for el in soup.select('a[href^="mailto:"]'):
            address = el.get('href', '')[len('mailto:'):].split('?')[0].strip()
            if address:
                return address
        for email in extract_emails(body_text):
            if not email.lower().endswith(PORTAL_EMAIL_DOMAINS):
                return email
        return None

    def _images(self, soup: BeautifulSoup) -> list[str]:
        urls: list[str] = []
        for selector in self.image_selectors:
            for img in soup.select(selector):
                src = img.get('data-src') or img.get('src') or ""
                if not src or src.startswith('data:'):
                    continue
                if self.image_url_markers and not any(m in src for m in self.image_url_markers):
                    continue
                if src not in urls:
                    urls.append(src)
        return urls

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    def parse(self, html: str, url: str, city: str = "") -> ExtractedProperty:
        """Build the listing record from the page HTML."""
        soup = BeautifulSoup(html or "", "lxml")
        body_text = _text(soup.body) if soup.body else _text(soup)

        features = self._features(soup)
        size = features.get('size')
        if size is None:
            match = SIZE_TEXT_PATTERN.search(body_text)
            size = clean_size(match.group(1)) if match else None

        phone = self._dom_phone(soup)
        if phone:
            logger.debug(f"Phone from page element: {phone}")
        else:
            found = extract_phone_numbers(html)
            phone = found[0] if found else None
            if phone:
                logger.debug(f"Phone from page text: {phone}")

        return ExtractedProperty(
            external_link=url,
            portal_source=self.name,
            address=self._address(soup, body_text) or ADDRESS_PLACEHOLDER,
            city=city,
            price=self._price(soup, body_text),
            size=size,
            description=first_text(soup, self.description_selectors, self.description_min_length),
            owner_name=first_text(soup, self.owner_selectors) or None,
            owner_phone=phone,
            owner_email=self._email(soup, body_text),
            has_web_contact=phone is None,
            bedrooms=features.get('bedrooms'),
            bathrooms=features.get('bathrooms'),
            floor=features.get('floor'),
            image_urls=self._images(soup),
        )


# ============================================================================
# PORTALS
# ============================================================================

class IdealistaAdapter(PortalAdapter):
    name = "Idealista"
    hosts = ("idealista.it",)

    consent_selectors = ['#didomi-notice-agree-button', 'button:has-text("Accetta")']
    phone_reveal_selectors = [
        'a.see-phones-btn',
        'button.see-phones-btn',
        '.phone-btn',
        'button:has-text("Vedi telefono")',
        'a:has-text("Vedi telefono")',
    ]

    address_selectors = ['h1.main-info__title-main', '.main-info__title-main', '.main-info__title-minor']
    price_selectors = ['.info-data-price', '.price-info__container .info-data-price']
    description_selectors = ['.comment p', '.adCommentsLanguage p', '.expandable-text']
    description_min_length = 1
    owner_selectors = ['.professional-name', '.advertiser-name-container', '.advertiser-name']
    phone_selectors = ['.phone-owner-link', '.see-phones-btn [data-phone]', '[data-phone]', '.contact-phone', '._mobilePhone', 'a[href^="tel:"]']
    feature_selectors = ['.info-features span', '.details-property_features li', '.details-property-feature-one li']
    image_selectors = ['img[src*="idealista"]', 'img[data-src*="idealista"]']
    image_url_markers = ('/foto/', 'image.master', '/blur/')

    bedroom_keywords = ('camer', 'local', 'stanz', 'habitaci')
    bathroom_keywords = ('bagn', 'baño')


class ImmobiliareAdapter(PortalAdapter):
    name = "Immobiliare.it"
    hosts = ("immobiliare.it",)

    consent_selectors = ['#didomi-notice-agree-button', 'button:has-text("Accetta")', 'button:has-text("Accetta e chiudi")']
    phone_reveal_selectors = [
        'button:has-text("Mostra telefono")',
        'button:has-text("Chiama")',
        '[data-cy="show-phone"]',
    ]

    address_selectors = ['h1.re-title__title', '.im-titleBlock__title', '.re-title__location']
    price_selectors = ['.re-overview__price', '.im-mainFeatures__title--price', '[class*="overview__price"]']
    description_selectors = ['.in-readAll', '.im-description__text', '.re-description']
    description_min_length = 1
    owner_selectors = ['.re-contactSheet__agencyName', '.in-referent__name', '.re-referent__name']
    phone_selectors = ['a[href^="tel:"]', '.re-contactSheet__phone', '[data-phone]']
    feature_selectors = ['.re-featuresItem', '.nd-list__item', '.re-mainFeatures__item']
    image_selectors = ['img[data-src]', 'img[src*="pwm.im-cdn"]']


class CasaDaPrivatoAdapter(PortalAdapter):
    """Private-seller portals: plain markup, phone usually printed in the text."""

    name = "CasaDaPrivato"
    hosts = ("casadaprivato.it",)

    consent_selectors = ['#iubenda-cs-accept-btn', '.iubenda-cs-accept-btn', 'button:has-text("Accetta")']
    phone_reveal_selectors = ['button:has-text("Mostra numero")', 'a:has-text("Mostra numero")', '.show-phone']

    address_selectors = ['h1', '[class*="address"]', '[class*="location"]', '[class*="zona"]']
    price_selectors = ['.prezzo', '.price', '[class*="price"]']
    description_selectors = ['.description', '.descrizione', 'article p', '.detail-text']
    description_min_length = 50
    phone_selectors = ['a[href^="tel:"]', '[data-phone]', '.telefono', '.phone']
    image_selectors = ['img']
    image_url_markers = ('annunci', 'immobil')


class ClickCaseAdapter(CasaDaPrivatoAdapter):
    name = "ClickCase"
    hosts = ("clickcase.it",)

    consent_selectors = ['#cookie-accept', 'button:has-text("Accetta")', 'button:has-text("Ho capito")']


class CasaItAdapter(PortalAdapter):
    name = "Casa.it"
    hosts = ("casa.it",)

    consent_selectors = ['#didomi-notice-agree-button', 'button:has-text("Accetta")']
    phone_reveal_selectors = ['button:has-text("Mostra telefono")', 'button:has-text("Telefono")']

    address_selectors = ['h1', '.location-title', '[class*="address"]']
    price_selectors = ['[class*="price"]', '.prezzo']
    description_selectors = ['[class*="description"]', '.descrizione', 'article p']
    description_min_length = 50
    owner_selectors = ['[class*="agency"] [class*="name"]', '[class*="publisher"]']
    feature_selectors = ['[class*="features"] li', '[class*="chars"] li']
    image_selectors = ['img[src*="casa.it"]', 'img[data-src]']


class SubitoAdapter(PortalAdapter):
    """Subito ads title the page with a headline; the street is found in the text."""

    name = "Subito.it"
    hosts = ("subito.it",)

    consent_selectors = ['#didomi-notice-agree-button', 'button:has-text("Accetta")', 'button:has-text("Continua senza accettare")']
    phone_reveal_selectors = ['button:has-text("Mostra numero")', 'button:has-text("Chiama")']

    zone_selectors = ['[class*="location"]', '[class*="Location"]', '[class*="zona"]', '[class*="city"]', '[class*="geo"]']
    price_selectors = ['[class*="price"]', '[class*="Price"]', '.price', '.prezzo', '[data-testid="price"]']
    description_selectors = [
        '[class*="description"]', '[class*="Description"]', '.description', '.descrizione',
        '[data-testid="description"]', 'article p', '.detail-text',
    ]
    description_min_length = 50
    feature_selectors = ['[class*="feature"] li', '[class*="Feature"] li']
    image_selectors = ['img[src*="subito"]', 'img[src*="sbito"]']

    def _address(self, soup: BeautifulSoup, body_text: str) -> str:
        match = STREET_TEXT_PATTERN.search(body_text)
        if match:
            return match.group(1).strip()
        return first_text(soup, self.zone_selectors) or first_text(soup, ['h1'])


class GenericAdapter(PortalAdapter):
    """Fallback for hosts without dedicated rules."""

    def matches(self, url: str) -> bool:
        return True


# ============================================================================
# REGISTRY
# ============================================================================

class PortalRegistry:
    """Picks the adapter for a URL; adapters are tried in registration order."""

    def __init__(self, adapters: Optional[Iterable[PortalAdapter]] = None, fallback: Optional[PortalAdapter] = None):
        self._adapters: list[PortalAdapter] = list(adapters or [])
        self.fallback = fallback or GenericAdapter()

    @property
    def adapters(self) -> list[PortalAdapter]:
        return list(self._adapters)

    def register(self, adapter: PortalAdapter, first: bool = False) -> None:
        """Add an adapter; ``first`` puts it ahead of the existing ones."""
        self.unregister(adapter.name)
        if first:
            self._adapters.insert(0, adapter)
        else:
            self._adapters.append(adapter)

    def unregister(self, name: str) -> None:
        self._adapters = [a for a in self._adapters if a.name != name]

    def for_url(self, url: str) -> PortalAdapter:
        for adapter in self._adapters:
            if adapter.matches(url):
                return adapter
        return self.fallback


def default_registry() -> PortalRegistry:
    return PortalRegistry([
        IdealistaAdapter(),
        ImmobiliareAdapter(),
        CasaDaPrivatoAdapter(),
        ClickCaseAdapter(),
        CasaItAdapter(),
        SubitoAdapter(),
    ])
