import re

_SLASH_ABBREVIATIONS = {
    "a/c": "account",
}

# Whole-word expansions applied after punctuation is stripped
ABBREVIATIONS = {
    "acct": "account",
    "txn": "transaction",
    "amt": "amount",
    "bal": "balance",
    "avl": "available",
    "avbl": "available",
    "cr": "credit",
    "dr": "debit",
}

_NOISE = re.compile(r"[^\w\s.]")
_WHITESPACE = re.compile(r"\s+")
_ABBREVIATION_PATTERN = re.compile(r"\b(" + "|".join(ABBREVIATIONS) + r")\b")


def normalize_message(text: str) -> str:
    if not text:
        return ""

    processed = text.lower()
    for short, full in _SLASH_ABBREVIATIONS.items():
        processed = processed.replace(short, f" {full} ")

    processed = _NOISE.sub(" ", processed)
    processed = _WHITESPACE.sub(" ", processed)
    processed = _ABBREVIATION_PATTERN.sub(lambda match: ABBREVIATIONS[match.group(1)], processed)
    return processed.strip()
