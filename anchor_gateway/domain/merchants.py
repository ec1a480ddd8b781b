"""Merchant categorisation heuristics"""

from typing import List

MERCHANT_CATEGORIES: List[str] = ["gambling", "drinking", "atm", "grocery", "other"]

KNOWN_GAMBLING_VENUES: List[str] = [
    "sportsbet",
    "tab",
    "ladbrokes",
    "bet365",
    "unibet",
    "pokerstars",
    "crown",
    "star casino",
    "skycity",
    "rsl",
    "leagues club",
    "hotel",
]


def categorize_merchant(merchant_name: str) -> str:
    """Map a payee name onto one of MERCHANT_CATEGORIES (first keyword match wins)"""
    name = (merchant_name or "").lower()

    if "atm" in name:
        return "atm"
    if "bar" in name or "pub" in name or "hotel" in name:
        return "drinking"
    if "bet" in name or "tab" in name or "casino" in name:
        return "gambling"
    if "grocery" in name or "coles" in name or "woolworths" in name:
        return "grocery"

    return "other"


def merchant_risk_score(merchant_name: str) -> float:
    """Heuristic gambling risk of a merchant in [0, 1]"""
    name = (merchant_name or "").lower()

    if "bet" in name or "casino" in name:
        return 1.0
    if "hotel" in name or "rsl" in name:
        return 0.7
    if "atm" in name:
        return 0.5

    return 0.0


def is_known_gambling_venue(merchant_name: str) -> bool:
    name = (merchant_name or "").lower()
    return any(venue in name for venue in KNOWN_GAMBLING_VENUES)


def is_atm(description: str) -> bool:
    return "atm" in (description or "").lower()


def is_drinking_venue(description: str) -> bool:
    return categorize_merchant(description) == "drinking"
