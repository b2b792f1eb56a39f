import math
import re
import zlib
from dataclasses import dataclass
from datetime import datetime

from sms_ledger.classifiers.patterns import match_merchant_keyword
from sms_ledger.domain.parsing import extract_amount

HASH_BUCKETS = 16
LEXICAL_SIZE = HASH_BUCKETS + 4
TEMPORAL_SIZE = 6
FINANCIAL_SIZE = 6
CONTEXTUAL_SIZE = 4
FEATURE_VECTOR_SIZE = LEXICAL_SIZE + TEMPORAL_SIZE + FINANCIAL_SIZE + CONTEXTUAL_SIZE

_TOKEN = re.compile(r"[a-z]{2,}")
_DIGIT = re.compile(r"\d")
_CURRENCY = re.compile(r"₹|\$|usd|inr|rs\.", re.IGNORECASE)
_AMOUNT_FLAG = re.compile(r"(?:₹|rs\.?|inr)\s*[\d,]+", re.IGNORECASE)
_ACCOUNT_FLAG = re.compile(r"[x*]+\d{3,4}", re.IGNORECASE)
_DATE_FLAG = re.compile(r"\d{1,2}[-/]\d{1,2}[-/]\d{2,4}|\d{1,2}-[a-z]{3}-\d{2,4}", re.IGNORECASE)
_BANK_CODE_FLAG = re.compile(r"[A-Z]{4}\d+")

# Placeholder score for contextual signals that have no extractor yet
NEUTRAL_SCORE = 0.5


@dataclass(frozen=True)
class FeatureContext:
    occurred_at: datetime | None = None
    merchant_hint: str | None = None


def _hashed_term_frequencies(text: str) -> list[float]:
    buckets = [0.0] * HASH_BUCKETS
    tokens = _TOKEN.findall(text.lower())
    if not tokens:
        return buckets
    for token in tokens:
        buckets[zlib.crc32(token.encode("utf-8")) % HASH_BUCKETS] += 1.0
    norm = math.sqrt(sum(value * value for value in buckets))
    return [value / norm for value in buckets]


def _lexical(text: str) -> list[float]:
    return _hashed_term_frequencies(text) + [
        float(len(text)),
        float(len(text.split())),
        float(len(_DIGIT.findall(text))),
        float(len(_CURRENCY.findall(text))),
    ]


def _temporal(occurred_at: datetime | None) -> list[float]:
    if occurred_at is None:
        return [0.0] * TEMPORAL_SIZE
    return [
        occurred_at.hour / 24.0,
        occurred_at.isoweekday() / 7.0,
        occurred_at.day / 31.0,
        occurred_at.month / 12.0,
        1.0 if occurred_at.weekday() >= 5 else 0.0,
        1.0 if 9 <= occurred_at.hour < 17 else 0.0,
    ]


def _signed_direction(lowered: str) -> float:
    if "debit" in lowered or "withdrawn" in lowered:
        return -1.0
    if "credit" in lowered or "deposit" in lowered:
        return 1.0
    return 0.0


def _financial(text: str) -> list[float]:
    lowered = text.lower()
    return [
        1.0 if _AMOUNT_FLAG.search(text) else 0.0,
        1.0 if _ACCOUNT_FLAG.search(text) else 0.0,
        1.0 if _DATE_FLAG.search(text) else 0.0,
        1.0 if _BANK_CODE_FLAG.search(text) else 0.0,
        extract_amount(text) or 0.0,
        _signed_direction(lowered),
    ]


def _contextual(text: str, context: FeatureContext) -> list[float]:
    haystack = f"{context.merchant_hint or ''} {text}".lower()
    merchant_score = 1.0 if match_merchant_keyword(haystack) else NEUTRAL_SCORE
    return [merchant_score, NEUTRAL_SCORE, NEUTRAL_SCORE, NEUTRAL_SCORE]


def build_feature_vector(text: str, context: FeatureContext | None = None) -> list[float]:
    """Fixed-length numeric description of a message.

    Groups, in order: lexical (hashed term buckets, length, words, digits,
    currency marks), temporal, financial-pattern flags and contextual scores.
    """
    context = context or FeatureContext()
    text = text or ""
    return _lexical(text) + _temporal(context.occurred_at) + _financial(text) + _contextual(text, context)
