"""Heuristic listing field extraction.

Listing pages share no schema, so every field is detected independently with
a regex or a keyword vocabulary and the first match wins. A field that cannot
be detected is simply left out; extraction never fails.
"""

from __future__ import annotations

import re
from typing import Any, Callable, Dict, List, Optional, Pattern, Sequence, Tuple

from bs4 import BeautifulSoup, Tag
from rapidfuzz import fuzz, process

from .logging_config import get_logger
from .models import SELLER_DEALER, SELLER_PRIVATE
from .parser_utils import html_to_text, truncate

logger = get_logger("extractor")

TITLE_MAX_LENGTH = 200
DESCRIPTION_MAX_LENGTH = 1000
DEFAULT_CURRENCY = "AUD"
DEFAULT_MILEAGE_UNIT = "km"
MAKE_MATCH_THRESHOLD = 90

PRICE_PATTERN = re.compile(r"\$\s*(\d[\d,]*(?:\.\d{2})?)")
PLAIN_NUMBER_PATTERN = re.compile(r"\d+(?:\.\d+)?")
YEAR_PATTERN = re.compile(r"\b(199[0-9]|20[0-2][0-9])\b")
ODOMETER_PATTERN = re.compile(r"\b(\d[\d,]*)\s*(?:km|kms|kilometres|kilometers)\b", re.IGNORECASE)
HEADING_PATTERN = re.compile(r"^#{1,6}\s*(.+?)\s*#*\s*$", re.MULTILINE)
BOLD_PATTERN = re.compile(r"\*\*(.+?)\*\*")
LOCATION_PATTERN = re.compile(
    r"\b((?i:Sydney|Melbourne|Brisbane|Perth|Adelaide|Hobart|Darwin|Canberra)"
    r"|NSW|VIC|QLD|WA|SA|TAS|NT|ACT)\b"
)
COLOR_PATTERN = re.compile(
    r"\bcolou?r\s*[:\-]?\s*(white|black|silver|grey|gray|blue|red|green|yellow|orange|brown|gold|beige|purple)\b",
    re.IGNORECASE,
)
SELLER_PATTERN = re.compile(r"^\s*(?:\*\*)?(?:seller|dealer|sold by)(?:\*\*)?\s*:\s*(?:\*\*)?(.+?)(?:\*\*)?\s*$", re.IGNORECASE | re.MULTILINE)
SECTION_PATTERN = r"^#{{1,6}}\s*{name}\b.*$"
BULLET_PATTERN = re.compile(r"^\s*[-*•]\s+(.+)$")

# Ordered (label, pattern) vocabularies; the first category that matches wins.
TRANSMISSION_KEYWORDS: Sequence[Tuple[str, Pattern[str]]] = (
    ("Automatic", re.compile(r"automatic|auto\b", re.IGNORECASE)),
    ("Manual", re.compile(r"manual", re.IGNORECASE)),
    ("CVT", re.compile(r"\bcvt\b", re.IGNORECASE)),
)
FUEL_KEYWORDS: Sequence[Tuple[str, Pattern[str]]] = (
    ("Petrol", re.compile(r"petrol|gasoline", re.IGNORECASE)),
    ("Diesel", re.compile(r"diesel", re.IGNORECASE)),
    ("Electric", re.compile(r"electric\b", re.IGNORECASE)),
    ("Hybrid", re.compile(r"hybrid", re.IGNORECASE)),
)
BODY_KEYWORDS: Sequence[Tuple[str, Pattern[str]]] = (
    ("SUV", re.compile(r"\bsuv\b", re.IGNORECASE)),
    ("Sedan", re.compile(r"\bsedan\b", re.IGNORECASE)),
    ("Hatchback", re.compile(r"\bhatchback\b|\bhatch\b", re.IGNORECASE)),
    ("Ute", re.compile(r"\bute\b|\bpickup\b", re.IGNORECASE)),
    ("Wagon", re.compile(r"\bwagon\b", re.IGNORECASE)),
)
SELLER_KEYWORDS: Sequence[Tuple[str, Pattern[str]]] = (
    (SELLER_DEALER, re.compile(r"dealer|dealership", re.IGNORECASE)),
    (SELLER_PRIVATE, re.compile(r"private\s*(?:seller|sale)", re.IGNORECASE)),
)

KNOWN_MAKES: Sequence[str] = (
    "Abarth", "Alfa Romeo", "Audi", "BMW", "BYD", "Chery", "Chrysler", "Citroen",
    "Cupra", "Dodge", "Fiat", "Ford", "Genesis", "GWM", "Haval", "Holden", "Honda",
    "Hyundai", "Infiniti", "Isuzu", "Jaguar", "Jeep", "Kia", "Land Rover", "LDV",
    "Lexus", "Mahindra", "Mazda", "Mercedes-Benz", "MG", "Mini", "Mitsubishi",
    "Nissan", "Peugeot", "Polestar", "Porsche", "Ram", "Renault", "Skoda", "SsangYong",
    "Subaru", "Suzuki", "Tesla", "Toyota", "Volkswagen", "Volvo",
)

_CSS_PRICE_SELECTORS = ('[class*="price"]', '[class*="amount"]', '[itemprop="price"]')
_CSS_ODOMETER_SELECTORS = ('[class*="odometer"]', '[class*="km"]', '[class*="mileage"]')
_CSS_TITLE_SELECTORS = ("h1", '[class*="title"]')


def _first_keyword(text: str, vocabulary: Sequence[Tuple[str, Pattern[str]]]) -> Optional[str]:
    for label, pattern in vocabulary:
        if pattern.search(text):
            return label
    return None


def _parse_number(value: str) -> Optional[float]:
    cleaned = value.replace(",", "")
    try:
        return float(cleaned)
    except ValueError:
        return None


def extract_price(text: str) -> Optional[float]:
    match = PRICE_PATTERN.search(text)
    if not match:
        return None
    return _parse_number(match.group(1))


def extract_year(text: str) -> Optional[int]:
    match = YEAR_PATTERN.search(text)
    return int(match.group(1)) if match else None


def extract_odometer(text: str) -> Optional[int]:
    match = ODOMETER_PATTERN.search(text)
    if not match:
        return None
    value = _parse_number(match.group(1))
    return int(value) if value is not None else None


def extract_title(text: str) -> Optional[str]:
    match = HEADING_PATTERN.search(text) or BOLD_PATTERN.search(text)
    if not match:
        return None
    title = match.group(1).strip()
    return truncate(title, TITLE_MAX_LENGTH) if title else None


def extract_location(text: str) -> Optional[str]:
    match = LOCATION_PATTERN.search(text)
    if not match:
        return None
    value = match.group(1)
    return value if value.isupper() else value.title()


def extract_condition(text: str) -> Optional[str]:
    if re.search(r"\bnew\b", text, re.IGNORECASE) and not re.search(r"used", text, re.IGNORECASE):
        return "New"
    if re.search(r"used|pre-owned|second[\s-]*hand", text, re.IGNORECASE):
        return "Used"
    return None


def _section_lines(text: str, name: str) -> List[str]:
    """Return the lines under the first heading called ``name``."""
    match = re.search(SECTION_PATTERN.format(name=name), text, re.IGNORECASE | re.MULTILINE)
    if not match:
        return []
    lines: List[str] = []
    for line in text[match.end():].splitlines():
        if HEADING_PATTERN.match(line):
            break
        lines.append(line)
    return lines


def extract_features(text: str) -> List[str]:
    features: List[str] = []
    for line in _section_lines(text, "features"):
        bullet = BULLET_PATTERN.match(line)
        if bullet:
            features.append(bullet.group(1).strip())
    return features


def extract_description(text: str) -> Optional[str]:
    lines = [line.strip() for line in _section_lines(text, "description") if line.strip()]
    if not lines:
        return None
    return truncate(" ".join(lines), DESCRIPTION_MAX_LENGTH)


def detect_make_model(title: Optional[str]) -> Tuple[Optional[str], Optional[str]]:
    """Fuzzy-match a known manufacturer in a listing title.

    The model is taken as the word following the make.
    """
    if not title:
        return None, None
    words = re.findall(r"[A-Za-z][A-Za-z0-9\-]*", title)
    for size in (2, 1):
        for index in range(len(words) - size + 1):
            candidate = " ".join(words[index:index + size])
            match = process.extractOne(
                candidate,
                KNOWN_MAKES,
                scorer=fuzz.ratio,
                processor=str.lower,
                score_cutoff=MAKE_MATCH_THRESHOLD,
            )
            if match:
                make = match[0]
                following = words[index + size:index + size + 1]
                return make, (following[0] if following else None)
    return None, None


def extract_listing_fields(text: Optional[str]) -> Dict[str, Any]:
    """Extract whatever listing fields can be detected in page text.

    Args:
        text: Markdown or HTML-derived page text

    Returns:
        Dictionary holding only the fields that were found
    """
    if not text:
        return {}

    data: Dict[str, Any] = {}

    price = extract_price(text)
    if price is not None:
        data["price"] = price
        data["currency"] = DEFAULT_CURRENCY

    year = extract_year(text)
    if year is not None:
        data["year"] = year

    mileage = extract_odometer(text)
    if mileage is not None:
        data["mileage"] = mileage
        data["mileage_unit"] = DEFAULT_MILEAGE_UNIT

    keyword_fields = (
        ("transmission", TRANSMISSION_KEYWORDS),
        ("fuel_type", FUEL_KEYWORDS),
        ("body_type", BODY_KEYWORDS),
        ("seller_type", SELLER_KEYWORDS),
    )
    for name, vocabulary in keyword_fields:
        value = _first_keyword(text, vocabulary)
        if value:
            data[name] = value

    condition = extract_condition(text)
    if condition:
        data["condition"] = condition

    title = extract_title(text)
    if title:
        data["title"] = title
        make, model = detect_make_model(title)
        if make:
            data["make"] = make
        if model:
            data["model"] = model

    location = extract_location(text)
    if location:
        data["location"] = location

    color = COLOR_PATTERN.search(text)
    if color:
        data["color"] = color.group(1).title()

    seller = SELLER_PATTERN.search(text)
    if seller:
        data["seller"] = truncate(seller.group(1).strip(), TITLE_MAX_LENGTH)

    features = extract_features(text)
    if features:
        data["features"] = features

    description = extract_description(text)
    if description:
        data["description"] = description

    return data


def _read_selectors(html: str) -> Dict[str, Any]:
    """Read title, price and odometer from common listing-page selectors."""
    soup = BeautifulSoup(html, "lxml")
    data: Dict[str, Any] = {}

    for selector in _CSS_TITLE_SELECTORS:
        element = soup.select_one(selector)
        if element:
            title = element.get_text(" ", strip=True)
            if title:
                data["title"] = truncate(title, TITLE_MAX_LENGTH)
                break

    price = _first_match(soup, _CSS_PRICE_SELECTORS, _element_price)
    if price:
        data["price"] = price
        data["currency"] = DEFAULT_CURRENCY

    mileage = _first_match(soup, _CSS_ODOMETER_SELECTORS, lambda el: extract_odometer(el.get_text(" ", strip=True)))
    if mileage is not None:
        data["mileage"] = mileage
        data["mileage_unit"] = DEFAULT_MILEAGE_UNIT

    return data


def _first_match(soup: BeautifulSoup, selectors: Sequence[str], read: Callable[[Tag], Any]) -> Any:
    for selector in selectors:
        for element in soup.select(selector):
            value = read(element)
            if value is not None:
                return value
    return None


def _element_price(element: Tag) -> Optional[float]:
    """Price from a ``content`` attribute or the element text.

    When the text carries several prices ("Was $33,000 now $31,500") the
    last one is the current asking price.
    """
    content = str(element.get("content") or "").replace(",", "").strip()
    if PLAIN_NUMBER_PATTERN.fullmatch(content):
        return _parse_number(content) or None
    matches = PRICE_PATTERN.findall(element.get_text(" ", strip=True))
    if not matches:
        return None
    return _parse_number(matches[-1]) or None


def extract_listing_from_html(html: Optional[str]) -> Dict[str, Any]:
    """Extract listing fields from an HTML page.

    Values found through listing-page selectors take precedence over the
    text heuristics run on the flattened page.
    """
    if not html:
        return {}
    data = extract_listing_fields(html_to_text(html))
    selected = _read_selectors(html)
    if "title" in selected:
        make, model = detect_make_model(selected["title"])
        if make:
            selected["make"] = make
        if model:
            selected["model"] = model
        if "year" not in data:
            year = extract_year(selected["title"])
            if year is not None:
                selected["year"] = year
    data.update(selected)
    logger.debug(f"Extracted {len(data)} fields from HTML page")
    return data
