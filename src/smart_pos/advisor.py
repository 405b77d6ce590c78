"""AI advisor backed by the Gemini ``generateContent`` REST endpoint.

The advisor is a best-effort collaborator: it drafts product descriptions
and comments on a month of sales. Every failure (missing API key, network
error, unexpected payload) degrades to an empty suggestion so that checkout,
stock updates and reporting never wait on it. :class:`AdvisorWorker` runs
requests on a background thread and hands back futures the caller may
ignore or cancel.
"""

from __future__ import annotations

import json
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Sequence

import httpx

from . import log
from .constants import ProductType
from .data_manager import (
    DEFAULT_ADVISOR_LANGUAGE,
    DEFAULT_ADVISOR_MODEL,
    DEFAULT_ADVISOR_TIMEOUT,
    ConfigSettings,
    TransactionRow,
)

API_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"
DESCRIPTION_WORD_LIMIT = 20

DESCRIPTION_PROMPT = (
    'Write a short, catchy product description (max {limit} words) for a product named "{name}" '
    'which is sold as "{product_type}" stock. Answer in {language}.'
)
SALES_PROMPT = (
    "Act as a business consultant. Here is the store's transaction data for the period {period}: "
    "{summary}. Give a short analysis in 3 points about sales performance and 1 strategic suggestion "
    "to increase revenue. Answer in {language}."
)


class AdvisorUnavailable(Exception):
    """Raised when the advisor cannot produce a suggestion."""


@dataclass(frozen=True)
class AdvisorSettings:
    """Connection details for the generative model."""

    api_key: str = ""
    model: str = DEFAULT_ADVISOR_MODEL
    language: str = DEFAULT_ADVISOR_LANGUAGE
    timeout: float = DEFAULT_ADVISOR_TIMEOUT

    @classmethod
    def from_config(cls, settings: ConfigSettings) -> "AdvisorSettings":
        return cls(
            api_key=settings.advisor_api_key,
            model=settings.advisor_model,
            language=settings.advisor_language,
            timeout=settings.advisor_timeout,
        )

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key.strip())


def build_sales_summaries(transactions: Iterable[TransactionRow]) -> List[Dict[str, Any]]:
    """Reduce transactions to the compact digest sent to the model.

    Each entry holds the sale date, its total and the comma-joined item names.
    """

    return [
        {
            "date": transaction.timestamp_iso.split("T")[0],
            "total": float(transaction.total),
            "items": ", ".join(item.name for item in transaction.items),
        }
        for transaction in transactions
    ]


def _extract_text(payload: Dict[str, Any]) -> str:
    try:
        parts = payload["candidates"][0]["content"]["parts"]
    except (KeyError, IndexError, TypeError) as exc:
        raise AdvisorUnavailable(f"Unexpected advisor response: {exc}") from exc
    return "".join(part.get("text", "") for part in parts if isinstance(part, dict)).strip()


class AdvisorClient:
    """Thin synchronous client for the Gemini REST API."""

    def __init__(self, settings: AdvisorSettings, client: Optional[httpx.Client] = None) -> None:
        self.settings = settings
        self._owns_client = client is None
        self.client = client or httpx.Client(timeout=settings.timeout)

    def _headers(self) -> Dict[str, str]:
        return {"Content-Type": "application/json", "x-goog-api-key": self.settings.api_key}

    def generate(self, prompt: str) -> str:
        """Send ``prompt`` and return the model's text.

        Raises:
            AdvisorUnavailable: If no API key is configured, the request fails,
                or the response carries no text.
        """

        if not self.settings.is_configured:
            raise AdvisorUnavailable("Advisor API key is not configured")

        try:
            response = self.client.post(
                f"{API_BASE_URL}/models/{self.settings.model}:generateContent",
                headers=self._headers(),
                json={"contents": [{"parts": [{"text": prompt}]}]},
            )
            response.raise_for_status()
            payload = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise AdvisorUnavailable(f"Advisor request failed: {exc}") from exc

        text = _extract_text(payload)
        if not text:
            raise AdvisorUnavailable("Advisor returned an empty answer")
        return text

    def draft_description(self, product_name: str, product_type: ProductType) -> str:
        """Suggest a short marketing description, or ``""`` when unavailable."""

        prompt = DESCRIPTION_PROMPT.format(
            limit=DESCRIPTION_WORD_LIMIT,
            name=product_name,
            product_type=product_type.value,
            language=self.settings.language,
        )
        try:
            return self.generate(prompt)
        except AdvisorUnavailable as exc:
            log.warning("No description suggestion for '%s': %s", product_name, exc)
            return ""

    def summarize_sales(self, transaction_summaries: Sequence[Dict[str, Any]], period: str) -> str:
        """Comment on a period's sales digest, or ``""`` when unavailable."""

        prompt = SALES_PROMPT.format(
            period=period,
            summary=json.dumps(list(transaction_summaries), ensure_ascii=False),
            language=self.settings.language,
        )
        try:
            return self.generate(prompt)
        except AdvisorUnavailable as exc:
            log.warning("No sales analysis for %s: %s", period, exc)
            return ""

    def close(self) -> None:
        if self._owns_client:
            self.client.close()


class AdvisorWorker:
    """Runs advisor calls on a single background thread."""

    def __init__(self, client: AdvisorClient) -> None:
        self.client = client
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="smart-pos-advisor")

    def request_description(self, product_name: str, product_type: ProductType) -> "Future[str]":
        return self._executor.submit(self.client.draft_description, product_name, product_type)

    def request_sales_summary(self, transactions: Iterable[TransactionRow], period: str) -> "Future[str]":
        summaries = build_sales_summaries(transactions)
        return self._executor.submit(self.client.summarize_sales, summaries, period)

    def shutdown(self, *, cancel_pending: bool = True) -> None:
        """Stop the worker; queued requests are cancelled unless told otherwise."""

        self._executor.shutdown(wait=True, cancel_futures=cancel_pending)
        self.client.close()
