import asyncio
import json
from collections.abc import Sequence
from typing import Any

from openai import APIError, AsyncOpenAI
from pydantic import ValidationError

from sms_ledger.analytics.models import InsightsSummary
from sms_ledger.core.settings import DEFAULT_LLM_BATCH_TIMEOUT, DEFAULT_LLM_TIMEOUT, DEFAULT_OPENAI_MODEL
from sms_ledger.domain.categories import category_from_name, category_names
from sms_ledger.logger import get_logger
from sms_ledger.models import ClassificationMethod, ClassificationResult, ExternalAnalysis, Transaction

logger = get_logger(__name__)

MAX_BATCH_TRANSACTIONS = 50
CONNECTION_TEST_TIMEOUT = 10.0

ANALYSIS_SYSTEM_PROMPT = (
    "You are a financial analyst specialising in bank SMS transaction analysis for Indian banks "
    "(SBI, HDFC, ICICI, AXIS and others). Extract every available transaction detail, categorise the "
    "transaction, flag anything unusual and give a confidence score. "
    "Always respond in valid JSON with the exact structure requested."
)

INSIGHTS_SYSTEM_PROMPT = (
    "You are a financial insights assistant. Analyse transaction patterns and report spending behaviour, "
    "anomalies, budgeting recommendations, financial health and short-term predictions. "
    "Keep the advice practical. Always respond in valid JSON."
)

_ANALYSIS_SCHEMA = """{
  "transaction_type": "credit" or "debit",
  "amount": 0.00,
  "date": "YYYY-MM-DD",
  "time": "HH:MM",
  "bank_name": "bank name from the SMS",
  "recipient_or_sender": "merchant, recipient or sender name",
  "account_number": "last 4 digits or masked number",
  "available_balance": 0.00,
  "category": "one of: %s",
  "subcategory": "specific subcategory such as 'Food Delivery' or 'ATM Withdrawal'",
  "merchant_name": "cleaned merchant name",
  "transaction_method": "UPI, ATM, POS, Online, Transfer, ...",
  "location": "location if mentioned",
  "reference_number": "transaction reference if available",
  "description": "human-readable transaction description",
  "confidence_score": 0.95,
  "anomaly_flags": ["unusual_amount", "new_merchant", "late_night"],
  "insights": "brief analysis of this transaction"
}"""

_INSIGHTS_SCHEMA = """{
  "financial_health_score": 0.85,
  "spending_patterns": {"primary_categories": [], "peak_spending_times": [], "preferred_merchants": [], "payment_methods": {}},
  "anomalies_detected": [{"type": "unusual_amount", "description": "", "severity": "medium", "transaction_id": "", "recommendation": ""}],
  "budget_insights": {"top_overspend_categories": [], "potential_savings": 0.0, "recommended_budget_allocation": {}},
  "recommendations": [{"type": "budgeting", "title": "", "description": "", "potential_savings": 0.0, "priority": "high"}],
  "trends": {"monthly_growth": 0.0, "category_trends": {}, "prediction_next_month": 0.0},
  "merchant_insights": {"most_frequent": "", "highest_spend": "", "new_merchants_this_month": 0, "merchant_loyalty_score": 0.0}
}"""


def build_analysis_prompt(raw_message: str) -> str:
    schema = _ANALYSIS_SCHEMA % ", ".join(name if name != "Other" else "Others" for name in category_names())
    return (
        "Analyze this bank SMS transaction and extract all relevant information.\n\n"
        f'SMS: "{raw_message}"\n\n'
        f"Return a JSON object with this structure:\n{schema}\n\n"
        "If a field is not available, use null."
    )


def build_insights_prompt(transactions: Sequence[Transaction]) -> str:
    rows = [
        {
            "id": tx.id,
            "amount": tx.amount,
            "type": tx.direction.value,
            "category_id": int(tx.category_id),
            "merchant": tx.merchant_name,
            "description": tx.description,
            "date": tx.occurred_at.isoformat(),
        }
        for tx in list(transactions)[:MAX_BATCH_TRANSACTIONS]
    ]
    return (
        "Analyze this user's transaction data and provide financial insights.\n\n"
        f"Transaction Data: {json.dumps(rows)}\n\n"
        f"Return a JSON object with:\n{_INSIGHTS_SCHEMA}"
    )


def _extract_json(content: str) -> str:
    """Strip a markdown code fence wrapped around a JSON body."""
    text = content.strip()
    if not text.startswith("```"):
        return text
    lines = text.splitlines()
    if len(lines) >= 2 and lines[-1].strip() == "```":
        return "\n".join(lines[1:-1]).strip()
    return text.strip("`").removeprefix("json").strip()


class ExternalAnalysisAdapter:
    def __init__(
        self,
        api_key: str | None = None,
        model: str = DEFAULT_OPENAI_MODEL,
        base_url: str | None = None,
        timeout: float = DEFAULT_LLM_TIMEOUT,
        batch_timeout: float = DEFAULT_LLM_BATCH_TIMEOUT,
        client: AsyncOpenAI | None = None,
    ):
        # One call per message; retries are the caller's concern.
        self.client = client or AsyncOpenAI(api_key=api_key, base_url=base_url or None, max_retries=0)
        self.model = model
        self.timeout = timeout
        self.batch_timeout = batch_timeout

    async def _complete(
        self,
        system_prompt: str,
        prompt: str,
        temperature: float,
        max_tokens: int,
        timeout: float,
    ) -> dict[str, Any] | None:
        try:
            response = await asyncio.wait_for(
                self.client.chat.completions.create(
                    model=self.model,
                    messages=[
                        {"role": "system", "content": system_prompt},
                        {"role": "user", "content": prompt},
                    ],
                    temperature=temperature,
                    max_tokens=max_tokens,
                    response_format={"type": "json_object"},
                ),
                timeout=timeout,
            )
        except asyncio.TimeoutError:
            logger.warning(f"[LLM] Request timed out after {timeout:.0f}s")
            return None
        except APIError as e:
            logger.warning(f"[LLM] Request failed: {e}")
            return None

        if not response.choices:
            logger.warning("[LLM] Empty response")
            return None
        content = response.choices[0].message.content
        if not content:
            logger.warning("[LLM] Response had no content")
            return None

        try:
            data = json.loads(_extract_json(content))
        except json.JSONDecodeError as e:
            logger.warning(f"[LLM] Malformed JSON in response: {e}")
            logger.debug(f"[LLM] Raw response content: {content}")
            return None
        if not isinstance(data, dict):
            logger.warning("[LLM] Response JSON is not an object")
            return None
        return data

    async def analyze_message(self, raw_message: str) -> ExternalAnalysis | None:
        data = await self._complete(
            ANALYSIS_SYSTEM_PROMPT,
            build_analysis_prompt(raw_message),
            temperature=0.1,
            max_tokens=500,
            timeout=self.timeout,
        )
        if data is None:
            return None
        try:
            return ExternalAnalysis.model_validate(data)
        except ValidationError as e:
            logger.warning(f"[LLM] Analysis did not match schema: {e.error_count()} error(s)")
            return None

    async def analyze(self, raw_message: str) -> ClassificationResult | None:
        analysis = await self.analyze_message(raw_message)
        if analysis is None:
            return None
        if analysis.amount <= 0:
            logger.debug("[LLM] Analysis had no positive amount, skipping")
            return None

        return ClassificationResult(
            category_id=category_from_name(analysis.category),
            direction=analysis.direction,
            confidence=min(1.0, max(0.0, analysis.confidence_score)),
            method=ClassificationMethod.EXTERNAL,
            merchant=analysis.merchant_name or analysis.recipient_or_sender,
            description=analysis.description,
            subcategory=analysis.subcategory,
            details=analysis,
        )

    async def analyze_batch(self, transactions: Sequence[Transaction]) -> InsightsSummary | None:
        if not transactions:
            return None
        data = await self._complete(
            INSIGHTS_SYSTEM_PROMPT,
            build_insights_prompt(transactions),
            temperature=0.3,
            max_tokens=1000,
            timeout=self.batch_timeout,
        )
        if data is None:
            return None
        try:
            return InsightsSummary.model_validate(data)
        except ValidationError as e:
            logger.warning(f"[LLM] Insights did not match schema: {e.error_count()} error(s)")
            return None

    async def test_connection(self) -> bool:
        data = await self._complete(
            "Respond only with JSON.",
            'Test message - respond with {"status": "ok"}',
            temperature=0.1,
            max_tokens=50,
            timeout=CONNECTION_TEST_TIMEOUT,
        )
        return data is not None
