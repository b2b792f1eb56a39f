from sms_ledger.models import Category, CategoryId

CATEGORIES: tuple[Category, ...] = (
    Category(id=CategoryId.FOOD, name="Food & Dining"),
    Category(id=CategoryId.TRANSPORT, name="Transport"),
    Category(id=CategoryId.SHOPPING, name="Shopping"),
    Category(id=CategoryId.ENTERTAINMENT, name="Entertainment"),
    Category(id=CategoryId.HEALTHCARE, name="Healthcare"),
    Category(id=CategoryId.UTILITIES, name="Utilities"),
    Category(id=CategoryId.EDUCATION, name="Education"),
    Category(id=CategoryId.FINANCIAL_SERVICES, name="Financial Services"),
    Category(id=CategoryId.INCOME, name="Income"),
    Category(id=CategoryId.OTHER, name="Other"),
)

_BY_ID = {category.id: category for category in CATEGORIES}

# Names the language model (and older exports) use for the same categories
_ALIASES = {
    "others": CategoryId.OTHER,
    "other": CategoryId.OTHER,
    "food": CategoryId.FOOD,
    "transportation": CategoryId.TRANSPORT,
    "travel": CategoryId.TRANSPORT,
    "bills & utilities": CategoryId.UTILITIES,
    "health & fitness": CategoryId.HEALTHCARE,
    "investment": CategoryId.FINANCIAL_SERVICES,
}
_BY_NAME = {category.name.lower(): category.id for category in CATEGORIES}

# Monthly budget per category used for overspend recommendations and alerts
DEFAULT_BUDGETS: dict[str, float] = {
    "Food & Dining": 500.0,
    "Transport": 300.0,
    "Shopping": 200.0,
    "Entertainment": 150.0,
    "Utilities": 400.0,
    "Healthcare": 100.0,
}
DEFAULT_BUDGET = 100.0


def get_category(category_id: int | CategoryId) -> Category:
    try:
        return _BY_ID[CategoryId(category_id)]
    except ValueError:
        return _BY_ID[CategoryId.OTHER]


def category_name(category_id: int | CategoryId) -> str:
    return get_category(category_id).name


def category_from_name(name: str | None) -> CategoryId:
    """Resolve a display name or alias; unknown names map to Other."""
    if not name:
        return CategoryId.OTHER
    key = name.strip().lower()
    if key in _BY_NAME:
        return _BY_NAME[key]
    return _ALIASES.get(key, CategoryId.OTHER)


def budget_for(name: str, budgets: dict[str, float] | None = None) -> float:
    table = DEFAULT_BUDGETS if budgets is None else budgets
    return table.get(name, DEFAULT_BUDGET)


def category_names() -> list[str]:
    return [category.name for category in CATEGORIES]
