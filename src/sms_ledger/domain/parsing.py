import re
from datetime import datetime

from sms_ledger.domain.normalizer import normalize_message
from sms_ledger.models import ParsedMessage, mask_account

FINANCIAL_KEYWORDS = (
    "debited",
    "credited",
    "transaction",
    "payment",
    "transfer",
    "withdrawal",
    "deposit",
    "balance",
    "account",
    "amount",
    "rs.",
    "rs ",
    "inr",
    "upi",
    "atm",
    "pos",
    "neft",
    "rtgs",
)

BANK_PATTERNS: tuple[tuple[str, re.Pattern[str]], ...] = (
    ("SBI", re.compile(r"SBI|SBIINB|SBIPSG", re.IGNORECASE)),
    ("HDFC", re.compile(r"HDFC|HDFCBK|HDFCBANK", re.IGNORECASE)),
    ("ICICI", re.compile(r"ICICI|ICICIB", re.IGNORECASE)),
    ("AXIS", re.compile(r"AXIS|AXISBK", re.IGNORECASE)),
    ("KOTAK", re.compile(r"KOTAK", re.IGNORECASE)),
    ("PAYTM", re.compile(r"PAYTM", re.IGNORECASE)),
    ("GPAY", re.compile(r"GPAY|GOOGLEPAY", re.IGNORECASE)),
    ("PHONEPE", re.compile(r"PHONEPE", re.IGNORECASE)),
)

_NUMBER = r"(\d+(?:,\d+)*(?:\.\d{1,2})?)"
AMOUNT_PATTERN = re.compile(r"(?:rs\.?|inr|₹)\s*" + _NUMBER, re.IGNORECASE)
BALANCE_PATTERN = re.compile(
    r"(?:avl|avbl|available)\.?\s*bal(?:ance)?\.?\s*(?:is\s*)?[:\-]?\s*(?:rs\.?|inr|₹)?\s*" + _NUMBER,
    re.IGNORECASE,
)
ACCOUNT_PATTERN = re.compile(
    r"(?:a/c|acct|account|card)\s*(?:no\.?)?\s*[:\-]?\s*([x*]*\d{3,}|[x*]+\s?\d{3,})",
    re.IGNORECASE,
)
MERCHANT_PATTERNS = (
    re.compile(r"\bpaid\s+to\s+([A-Za-z][A-Za-z0-9&' ]{1,40}?)(?=\s+(?:on|for|ref|via|upi)\b|[.,]|$)", re.IGNORECASE),
    re.compile(r"\bat\s+([A-Za-z][A-Za-z0-9&' ]{1,40}?)(?=\s+(?:on|for|ref|via|upi)\b|[.,]|$)", re.IGNORECASE),
    re.compile(r"\bto\s+([A-Za-z][A-Za-z0-9&' ]{1,40}?)(?=\s+(?:on|for|ref|via|upi)\b|[.,]|$)", re.IGNORECASE),
)
_NOT_MERCHANTS = ("your", "a/c", "account", "acct", "you", "the", "dispute", "call", "customer care")
_BALANCE_CONTEXT = re.compile(r"bal(?:ance)?\W*$", re.IGNORECASE)


def is_financial_message(content: str) -> bool:
    lowered = content.lower()
    return any(keyword in lowered for keyword in FINANCIAL_KEYWORDS)


def _to_float(raw: str) -> float | None:
    try:
        return float(raw.replace(",", ""))
    except ValueError:
        return None


def extract_amount(content: str) -> float | None:
    """First currency amount that is not the available balance."""
    for match in AMOUNT_PATTERN.finditer(content):
        prefix = content[max(0, match.start() - 24):match.start()]
        if _BALANCE_CONTEXT.search(prefix.rstrip(": ")):
            continue
        value = _to_float(match.group(1))
        if value is not None and value > 0:
            return value
    return None


def extract_balance(content: str) -> float | None:
    match = BALANCE_PATTERN.search(content)
    if not match:
        return None
    return _to_float(match.group(1))


def extract_account(content: str) -> str | None:
    match = ACCOUNT_PATTERN.search(content)
    if not match:
        return None
    return mask_account(match.group(1))


def bank_from_sender(sender: str | None) -> str | None:
    if not sender:
        return None
    for bank, pattern in BANK_PATTERNS:
        if pattern.search(sender):
            return bank
    return None


def extract_merchant_hint(content: str) -> str | None:
    for pattern in MERCHANT_PATTERNS:
        for match in pattern.finditer(content):
            candidate = match.group(1).strip()
            lowered = candidate.lower()
            if len(candidate) <= 2 or lowered.startswith(_NOT_MERCHANTS):
                continue
            return " ".join(candidate.split()[:3])
    return None


def parse_message(raw_text: str, sender: str = "", received_at: datetime | None = None) -> ParsedMessage:
    return ParsedMessage(
        raw_text=raw_text,
        normalized_text=normalize_message(raw_text),
        sender=sender or "",
        received_at=received_at or datetime.now(),
        amount=extract_amount(raw_text),
        account_fragment=extract_account(raw_text),
        bank_name=bank_from_sender(sender) or bank_from_sender(raw_text),
        available_balance=extract_balance(raw_text),
        merchant_hint=extract_merchant_hint(raw_text),
    )
