from fastapi import APIRouter, Request

from sms_ledger.api.schemas import CategoryResponse
from sms_ledger.domain.categories import CATEGORIES, budget_for
from sms_ledger.models import CategoryId

router = APIRouter()


@router.get("/categories", response_model=list[CategoryResponse])
async def get_categories(request: Request) -> list[CategoryResponse]:
    analytics = getattr(request.app.state, "analytics", None)
    budgets = analytics.budgets if analytics is not None else None
    return [
        CategoryResponse(
            id=int(category.id),
            name=category.name,
            budget=None if category.id == CategoryId.INCOME else budget_for(category.name, budgets),
        )
        for category in CATEGORIES
    ]
