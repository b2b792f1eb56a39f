import re
from collections.abc import Iterable
from datetime import datetime

from sms_ledger.logger import get_logger
from sms_ledger.models import (
    CategoryId,
    ClassificationMethod,
    ClassificationResult,
    Direction,
    ParsedMessage,
)

from .base import Classifier

logger = get_logger(__name__)

# Keyword -> category, grouped by category. Order matters: first match wins.
MERCHANT_PATTERNS: dict[str, CategoryId] = {}


def _register(category: CategoryId, keywords: Iterable[str]) -> None:
    for keyword in keywords:
        MERCHANT_PATTERNS.setdefault(keyword, category)


_register(CategoryId.FOOD, (
    "swiggy", "zomato", "dominos", "pizza", "restaurant", "cafe", "food", "dining",
    "kitchen", "eatery", "bigbasket", "grofers", "grocery", "blinkit", "instamart",
    "mcdonalds", "kfc", "subway", "starbucks", "dunkin", "zepto", "dairy", "bakery",
    "fresco", "haldirams", "biryani",
))
_register(CategoryId.TRANSPORT, (
    "uber", "ola", "rapido", "metro", "dmrc", "petrol", "fuel", "cab", "taxi",
    "parking", "toll", "bus", "train", "scooter", "irctc", "makemytrip", "redbus",
    "goibibo", "fastag",
))
_register(CategoryId.SHOPPING, (
    "amazon", "flipkart", "myntra", "ajio", "nykaa", "shopping", "mall", "bazaar",
    "meesho", "shopsy", "reliance", "lifestyle", "westside", "pantaloons",
    "fashion", "clothing", "shoes", "electronics", "store",
))
_register(CategoryId.ENTERTAINMENT, (
    "netflix", "spotify", "prime", "hotstar", "youtube", "movie", "cinema",
    "theater", "bookmyshow", "music", "kindle", "disney", "zee5", "voot",
    "subscription", "entertainment",
))
_register(CategoryId.HEALTHCARE, (
    "hospital", "clinic", "pharmacy", "medical", "doctor", "health", "medicine",
    "pharmeasy", "netmeds", "apollo", "medplus", "wellness", "dental", "diagnostic",
))
_register(CategoryId.UTILITIES, (
    "electricity", "water", "internet", "mobile", "recharge", "bill", "utility",
    "broadband", "wifi", "airtel", "jio", "vodafone", "bsnl",
))
_register(CategoryId.EDUCATION, (
    "school", "college", "university", "course", "textbook", "tuition", "exam",
    "education", "fees", "byju", "unacademy", "vedantu", "coursera",
))
_register(CategoryId.FINANCIAL_SERVICES, (
    "insurance", "mutual", "loan", "emi", "sip", "investment", "fd", "rd", "policy",
))
_register(CategoryId.INCOME, (
    "salary", "wage", "bonus", "incentive", "refund", "cashback", "reward", "dividend",
))

CONTEXTUAL_KEYWORDS: dict[CategoryId, tuple[str, ...]] = {
    CategoryId.FOOD: ("ordered", "delivered", "meal", "lunch", "dinner", "breakfast", "snack", "grocery", "food"),
    CategoryId.TRANSPORT: ("trip", "ride", "journey", "commute", "station", "airport", "booking", "ticket"),
    CategoryId.SHOPPING: ("order", "cart", "delivery", "shipped", "product", "item", "purchase", "buy"),
    CategoryId.ENTERTAINMENT: ("subscription", "premium", "streaming", "watch", "listen", "entertainment"),
    CategoryId.HEALTHCARE: ("treatment", "consultation", "prescription", "test", "checkup", "medicine"),
    CategoryId.UTILITIES: ("payment", "due", "monthly", "connection", "service", "bill", "recharge"),
    CategoryId.EDUCATION: ("admission", "semester", "class", "training", "certification", "course"),
    CategoryId.FINANCIAL_SERVICES: ("insurance", "premium", "loan", "emi", "investment", "policy"),
    CategoryId.INCOME: ("credited", "received", "bonus", "increment", "salary", "refund", "cashback"),
}

EXPENSE_KEYWORDS = (
    "debited", "debit", "paid", "spent", "withdrawn", "purchase", "charged", "billed",
    "transferred to", "payment made",
)
INCOME_KEYWORDS = (
    "credited", "credit", "deposited", "received", "refund", "cashback", "bonus", "salary",
    "transferred from",
)
_KEYWORD_WEIGHTS = {
    "debited": 5,
    "credited": 5,
    "paid": 4,
    "received": 4,
    "spent": 3,
    "withdrawn": 3,
}
_DEFAULT_KEYWORD_WEIGHT = 2

_BILL_WORDS = ("bill", "utility", "electricity", "water")
_MEDICAL_WORDS = ("medical", "health", "doctor", "hospital")
_EDUCATION_WORDS = ("education", "course", "fees", "school")

# (first hour, last hour, amount ceiling) for small meal-time purchases
_MEAL_WINDOWS = ((6, 11, 200.0), (12, 14, 300.0), (19, 22, 500.0))

_EXTRACTION_PATTERNS = (
    re.compile(r"at\s+([A-Z\s]+)\s+on", re.IGNORECASE),
    re.compile(r"to\s+([A-Z\s]+)\s+for", re.IGNORECASE),
    re.compile(r"paid\s+to\s+([A-Z\s]+)", re.IGNORECASE),
)

_word_cache: dict[str, re.Pattern[str]] = {}


def _word(keyword: str) -> re.Pattern[str]:
    pattern = _word_cache.get(keyword)
    if pattern is None:
        pattern = re.compile(rf"\b{re.escape(keyword)}s?\b")
        _word_cache[keyword] = pattern
    return pattern


def contains_word(text: str, keyword: str) -> bool:
    return _word(keyword).search(text) is not None


def match_merchant_keyword(text: str) -> tuple[str, CategoryId] | None:
    for keyword, category in MERCHANT_PATTERNS.items():
        if contains_word(text, keyword):
            return keyword, category
    return None


def determine_direction(text: str) -> Direction:
    """Weighted keyword vote between money leaving and money entering the account."""
    content = (text or "").lower()
    expense_score = 0
    income_score = 0

    for keyword in EXPENSE_KEYWORDS:
        if keyword in content:
            expense_score += _KEYWORD_WEIGHTS.get(keyword, _DEFAULT_KEYWORD_WEIGHT)
    for keyword in INCOME_KEYWORDS:
        if keyword in content:
            income_score += _KEYWORD_WEIGHTS.get(keyword, _DEFAULT_KEYWORD_WEIGHT)

    # "debited from your account and credited to X" is money leaving
    if "debited" in content and "your account" in content:
        expense_score += 10
    if "credited" in content and "to recipient" in content:
        expense_score += 5
    if "payment successful" in content or "transaction successful" in content:
        expense_score += 3
    if "amount received" in content or "money credited" in content:
        income_score += 5

    logger.debug("Direction scores - expense: %s, income: %s", expense_score, income_score)
    return Direction.EXPENSE if expense_score > income_score else Direction.INCOME


def _amount_bucket(content: str, amount: float) -> CategoryId | None:
    if amount > 50000:
        return CategoryId.FINANCIAL_SERVICES
    if amount > 10000:
        return CategoryId.SHOPPING
    if amount > 5000:
        if any(word in content for word in _BILL_WORDS):
            return CategoryId.UTILITIES
        return CategoryId.SHOPPING
    if amount > 1000:
        if any(word in content for word in _MEDICAL_WORDS):
            return CategoryId.HEALTHCARE
        if any(word in content for word in _EDUCATION_WORDS):
            return CategoryId.EDUCATION
        return CategoryId.TRANSPORT
    if amount < 500:
        return CategoryId.FOOD
    # 500..1000 has no bucket and falls through to the meal windows
    return None


def _meal_window(amount: float, hour: int) -> CategoryId | None:
    # Every window ceiling is <= 500, so amounts that reach here never match.
    # Kept so the amount-bucket default stays the observable behaviour.
    for first, last, ceiling in _MEAL_WINDOWS:
        if first <= hour <= last and amount < ceiling:
            return CategoryId.FOOD
    return None


class PatternClassifier(Classifier):
    name = "pattern"

    def classify(
        self,
        text: str,
        amount: float,
        direction: Direction,
        merchant_hint: str | None = None,
        hour: int | None = None,
    ) -> ClassificationResult:
        try:
            category, confidence, method = self._categorize(text, amount, direction, merchant_hint, hour)
            return ClassificationResult(
                category_id=category,
                direction=direction,
                confidence=confidence,
                method=method,
                merchant=self.extract_merchant(text, merchant_hint),
                description=self.describe(text, direction),
            )
        except Exception as e:
            logger.error(f"Pattern classification failed: {e}")
            return ClassificationResult(
                category_id=CategoryId.OTHER,
                direction=direction,
                confidence=0.5,
                method=ClassificationMethod.FALLBACK,
                merchant=merchant_hint,
            )

    def classify_message(self, message: ParsedMessage) -> ClassificationResult:
        direction = determine_direction(message.raw_text)
        return self.classify(
            message.normalized_text,
            message.amount or 0.0,
            direction,
            merchant_hint=message.merchant_hint,
            hour=message.received_at.hour,
        )

    def learn(self, message: ParsedMessage, category_id: CategoryId) -> None:
        # Static tables; nothing to learn.
        pass

    def _categorize(
        self,
        text: str,
        amount: float,
        direction: Direction,
        merchant_hint: str | None,
        hour: int | None,
    ) -> tuple[CategoryId, float, ClassificationMethod]:
        content = (text or "").lower()
        merchant = (merchant_hint or "").lower()

        # 1. Merchant hint
        if merchant:
            for keyword, category in MERCHANT_PATTERNS.items():
                if keyword in merchant:
                    return category, 0.9, ClassificationMethod.PATTERN

        # 2. Merchant keyword anywhere in the body
        body_match = match_merchant_keyword(content)
        if body_match:
            return body_match[1], 0.85, ClassificationMethod.PATTERN

        # 3. Contextual keywords, most hits wins
        best_category = CategoryId.OTHER
        max_matches = 0
        for category, keywords in CONTEXTUAL_KEYWORDS.items():
            matches = sum(1 for keyword in keywords if contains_word(content, keyword))
            if matches > max_matches:
                max_matches = matches
                best_category = category
        if max_matches > 0:
            return best_category, min(0.8, 0.6 + 0.05 * (max_matches - 1)), ClassificationMethod.PATTERN

        # 4. Income needs no amount heuristics
        if direction == Direction.INCOME:
            return CategoryId.INCOME, 0.7, ClassificationMethod.PATTERN

        # 5. Amount buckets
        bucket = _amount_bucket(content, amount)
        if bucket is not None:
            return bucket, 0.55, ClassificationMethod.PATTERN

        # 6. Meal-time windows
        meal = _meal_window(amount, datetime.now().hour if hour is None else hour)
        if meal is not None:
            return meal, 0.5, ClassificationMethod.PATTERN

        return CategoryId.OTHER, 0.5, ClassificationMethod.FALLBACK

    @staticmethod
    def extract_merchant(text: str, merchant_hint: str | None = None) -> str | None:
        if merchant_hint:
            return merchant_hint

        match = match_merchant_keyword((text or "").lower())
        if match:
            return match[0].title()

        for pattern in _EXTRACTION_PATTERNS:
            found = pattern.search(text or "")
            if found and found.group(1).strip():
                return found.group(1).strip().title()
        return None

    @staticmethod
    def describe(text: str, direction: Direction) -> str:
        content = (text or "").lower()

        if direction == Direction.INCOME:
            for word, label in (
                ("salary", "Salary Credit"),
                ("refund", "Refund Received"),
                ("cashback", "Cashback"),
                ("bonus", "Bonus Payment"),
                ("interest", "Interest Earned"),
                ("dividend", "Dividend"),
            ):
                if word in content:
                    return label
            return "Money Received"

        for words, label in (
            (("swiggy", "zomato"), "Food Delivery"),
            (("uber", "ola"), "Cab Ride"),
            (("amazon", "flipkart"), "Online Shopping"),
            (("netflix", "spotify"), "Subscription"),
            (("petrol", "fuel"), "Fuel Payment"),
            (("electricity", "water"), "Utility Bill"),
            (("insurance", "premium"), "Insurance Premium"),
            (("emi", "loan"), "EMI Payment"),
            (("medical", "pharmacy"), "Healthcare"),
            (("school", "education"), "Education Fee"),
            (("food", "restaurant", "dining"), "Food & Dining"),
            (("movie", "cinema", "entertainment"), "Entertainment"),
            (("bill", "payment"), "Bill Payment"),
            (("shopping", "purchase", "buy"), "Shopping"),
            (("transfer", "sent"), "Money Transfer"),
            (("withdrawal", "atm"), "Cash Withdrawal"),
        ):
            if any(contains_word(content, word) for word in words):
                return label
        return "Payment"
