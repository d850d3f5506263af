"""Cleanup helpers for scraped listing text: prices, sizes, phones, addresses, portals."""

from __future__ import annotations

import re
import unicodedata
from typing import Optional


# ============================================================================
# PORTALS
# ============================================================================

PORTAL_OTHER = "Altro"

# Order matters: the first hostname found in the URL wins.
PORTAL_HOSTS = [
    ("idealista.it", "Idealista"),
    ("immobiliare.it", "Immobiliare.it"),
    ("casadaprivato.it", "CasaDaPrivato"),
    ("clickcase.it", "ClickCase"),
    ("casa.it", "Casa.it"),
    ("subito.it", "Subito.it"),
]


def detect_portal(url: Optional[str]) -> str:
    """Name of the portal a listing URL belongs to, ``Altro`` when unknown."""
    if not url:
        return PORTAL_OTHER
    lowered = url.lower()
    for host, name in PORTAL_HOSTS:
        if host in lowered:
            return name
    return PORTAL_OTHER


# ============================================================================
# PRICE / SIZE
# ============================================================================

def clean_price(text: Optional[str]) -> Optional[int]:
    """Parse a price like "€ 350.000" into 350000. None when there are no digits."""
    if not text:
        return None
    # Drop cents ("350.000,00") before stripping separators
    text = re.sub(r',\d{1,2}\s*$', '', text.strip())
    digits = re.sub(r'\D', '', text)
    if not digits:
        return None
    return int(digits)


def clean_size(text: Optional[str]) -> Optional[int]:
    """Parse a surface like "85 mq" or "1.200 m²" into whole square meters."""
    if not text:
        return None
    match = re.search(r'(\d{1,3}(?:\.\d{3})+|\d+)', text)
    if not match:
        return None
    return int(match.group(1).replace('.', ''))


def parse_int(text: Optional[str]) -> Optional[int]:
    """First integer in a text ("3 locali" -> 3)."""
    if not text:
        return None
    match = re.search(r'(\d+)', text)
    return int(match.group(1)) if match else None


# ============================================================================
# CONTACTS
# ============================================================================

PHONE_PATTERNS = [
    re.compile(r'(?:\+39|0039)?[\s.-]?3[0-9]{2}[\s.-]?\d{6,7}'),    # mobile, formatted
    re.compile(r'(?:\+39|0039)?[\s.-]?0[0-9]{1,3}[\s.-]?\d{6,8}'),  # landline, formatted
    re.compile(r'3\d{9}'),
    re.compile(r'0\d{8,10}'),
]
EMAIL_PATTERN = re.compile(r'[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}')


def extract_phone_numbers(text: Optional[str]) -> list[str]:
    """Italian mobile and landline numbers found in text, in order, without prefix."""
    if not text:
        return []
    phones: list[str] = []
    for pattern in PHONE_PATTERNS:
        for raw in pattern.findall(text):
            cleaned = re.sub(r'[\s.-]', '', raw)
            cleaned = re.sub(r'^(?:0039|\+39)', '', cleaned)
            if 9 <= len(cleaned) <= 12 and cleaned not in phones:
                phones.append(cleaned)
    return phones


def extract_emails(text: Optional[str]) -> list[str]:
    if not text:
        return []
    return list(dict.fromkeys(EMAIL_PATTERN.findall(text)))


def national_phone_number(phone: Optional[str]) -> str:
    """Digits of an Italian number without the 39 country code."""
    if not phone:
        return ""
    digits = re.sub(r'\D', '', phone)
    if digits.startswith('0039'):
        digits = digits[4:]
    elif digits.startswith('39') and len(digits) > 10:
        digits = digits[2:]
    return digits


def normalize_phone_number(phone: Optional[str]) -> str:
    """International form used to compare contacts: "+39 333 123 4567" -> "393331234567"."""
    if not phone:
        return ""
    normalized = re.sub(r'[^0-9+]', '', phone)
    if normalized.startswith('+'):
        normalized = normalized[1:]
    if normalized.startswith('00'):
        normalized = normalized[2:]
    if len(normalized) == 10 and normalized.startswith('3'):
        normalized = '39' + normalized
    return normalized


def is_mobile_phone(phone: Optional[str]) -> bool:
    """Italian mobile numbers start with 3 once the country code is removed."""
    return national_phone_number(phone).startswith('3')


# ============================================================================
# ADDRESSES
# ============================================================================

# Street-type words that say nothing about which street it is
GENERIC_STREET_WORDS = {
    'via', 'v', 'viale', 'vle', 'piazza', 'pza', 'p', 'za', 'piazzale', 'le',
    'piazzetta', 'corso', 'cso', 'c', 'so', 'largo', 'vicolo', 'strada', 'str',
    'alzaia', 'ripa', 'galleria', 'bastioni', 'passaggio', 'contrada', 'loc',
    'localita', 'frazione',
}

# Addresses that only name a city (or the country)
GENERIC_ADDRESSES = {
    'milano', 'roma', 'torino', 'firenze', 'bologna', 'napoli', 'genova',
    'venezia', 'italy', 'italia',
}


def fold_accents(text: str) -> str:
    return unicodedata.normalize('NFKD', text).encode('ascii', 'ignore').decode('ascii')


def normalize_address(address: Optional[str]) -> str:
    """Lowercase, accent-free, punctuation-free address without street-type words."""
    if not address:
        return ""
    addr = fold_accents(address.lower().strip())
    addr = re.sub(r'[^a-z0-9\s]', ' ', addr)
    words = [w for w in addr.split() if w not in GENERIC_STREET_WORDS]
    return ' '.join(words)


def extract_street_and_number(address: Optional[str]) -> tuple[str, Optional[str]]:
    """Split an address into (street words, first civic number)."""
    normalized = normalize_address(address)
    match = re.search(r'(\d+)', normalized)
    number = match.group(1) if match else None
    street = re.sub(r'\d+', ' ', normalized)
    street = re.sub(r'\s+', ' ', street).strip()
    return street, number


def street_words(address: Optional[str], longer_than: int = 2) -> list[str]:
    """Identifying words of the street name, in order, without duplicates."""
    street, _ = extract_street_and_number(address)
    return list(dict.fromkeys(w for w in street.split() if len(w) > longer_than))


def is_generic_address(address: Optional[str]) -> bool:
    """True when an address cannot identify a unit: empty, a bare city, or no civic number."""
    if not address or not address.strip():
        return True
    normalized = address.lower().strip()
    if normalized in GENERIC_ADDRESSES:
        return True
    if not re.search(r'\d', address):
        return True
    return len(normalized) < 5


def has_exclusivity_keyword(text: Optional[str]) -> bool:
    """Listing text mentions an exclusive mandate ("esclusiva", "esclusività")."""
    if not text:
        return False
    folded = fold_accents(text.lower())
    return 'esclusiva' in folded or 'esclusivita' in folded


# ============================================================================
# AGENCIES
# ============================================================================

PRIVATE_SELLER_PATTERNS = (
    'privato', 'privata', 'venditaprivata', 'proprietario', 'proprietaria',
)


def normalize_agency_name(name: Optional[str]) -> str:
    """Comparable agency name: lowercase, no accents, no spaces or punctuation."""
    if not name or not isinstance(name, str):
        return ""
    folded = fold_accents(name.strip().lower())
    return re.sub(r'[.,\s-]', '', folded)


def is_private_seller_name(name: Optional[str]) -> bool:
    normalized = normalize_agency_name(name)
    return any(pattern in normalized for pattern in PRIVATE_SELLER_PATTERNS)
