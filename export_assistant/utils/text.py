import re
from typing import List

EXPORT_KEYWORDS = {
    "export", "import", "trade", "shipping", "customs", "tariff", "quota",
    "buyer", "seller", "market", "product", "country", "compliance",
    "certificate", "documentation", "freight", "logistics", "payment",
    "quotation", "price", "currency", "exchange", "regulation",
}

COUNTRY_NAMES = {
    "usa": "United States",
    "us": "United States",
    "u.s.": "United States",
    "united states": "United States",
    "america": "United States",
    "uk": "United Kingdom",
    "united kingdom": "United Kingdom",
    "britain": "United Kingdom",
    "great britain": "United Kingdom",
    "england": "United Kingdom",
    "uae": "United Arab Emirates",
    "united arab emirates": "United Arab Emirates",
    "china": "China",
    "prc": "China",
    "germany": "Germany",
    "deutschland": "Germany",
    "japan": "Japan",
    "nippon": "Japan",
    "india": "India",
    "bharat": "India",
    "canada": "Canada",
    "australia": "Australia",
    "france": "France",
    "italy": "Italy",
    "italia": "Italy",
    "spain": "Spain",
    "espana": "Spain",
    "brazil": "Brazil",
    "brasil": "Brazil",
    "mexico": "Mexico",
    "russia": "Russia",
    "russian federation": "Russia",
    "south korea": "South Korea",
    "korea": "South Korea",
    "singapore": "Singapore",
    "netherlands": "Netherlands",
    "holland": "Netherlands",
    "switzerland": "Switzerland",
    "sweden": "Sweden",
}

_NON_WORD = re.compile(r"[^\w\s]")


def tokenize(text: str, min_length: int = 2) -> List[str]:
    """Lowercase, strip punctuation and split on whitespace."""
    if not text:
        return []
    words = _NON_WORD.sub(" ", text.lower()).split()
    return [w for w in words if len(w) >= min_length]


def extract_keywords(text: str) -> List[str]:
    # Known export terms plus any longer word; order of first appearance kept
    keywords = []
    for word in tokenize(text, min_length=3):
        if (word in EXPORT_KEYWORDS or len(word) > 4) and word not in keywords:
            keywords.append(word)
    return keywords


def normalize_country(name: str) -> str:
    if not name:
        return ""
    key = " ".join(name.lower().split())
    if key in COUNTRY_NAMES:
        return COUNTRY_NAMES[key]
    return " ".join(part.capitalize() for part in key.split())


def contains_term(text: str, term: str) -> bool:
    """True when `term` occurs in lowercased `text` starting on a word boundary."""
    return re.search(r"(?<!\w)" + re.escape(term), text) is not None
