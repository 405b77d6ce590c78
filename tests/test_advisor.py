"""Tests for the AI advisor client, driven through ``httpx.MockTransport``."""

from __future__ import annotations

import json
from decimal import Decimal

import httpx
import pytest

from smart_pos import advisor, constants, data_manager


def _answer(text: str) -> dict:
    return {"candidates": [{"content": {"parts": [{"text": text}]}}]}


def _client(handler, *, api_key: str = "test-key") -> advisor.AdvisorClient:
    settings = advisor.AdvisorSettings(api_key=api_key, model="gemini-2.5-flash", language="Indonesian", timeout=1.0)
    return advisor.AdvisorClient(settings, client=httpx.Client(transport=httpx.MockTransport(handler)))


def _transaction() -> data_manager.TransactionRow:
    item = data_manager.TransactionItemRow(
        product_id="P001",
        name="Kopi Susu Gula Aren",
        price=Decimal("18000"),
        cost=Decimal("10000"),
        quantity=2,
        subtotal=Decimal("36000"),
        product_type=constants.ProductType.READY,
    )
    return data_manager.TransactionRow(
        transaction_id="T1",
        timestamp_iso="2026-03-15T10:30:00+07:00",
        items=(item, item),
        total=Decimal("72000"),
        profit=Decimal("32000"),
        customer_name=constants.DEFAULT_CUSTOMER_NAME,
        customer_phone=None,
        customer_address=None,
        payment_method=constants.PaymentMethod.CASH,
        is_pre_order=False,
    )


def test_draft_description_posts_prompt_and_returns_text():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["key"] = request.headers["x-goog-api-key"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json=_answer("  Kopi manis yang bikin semangat!  "))

    result = _client(handler).draft_description("Kopi Susu", constants.ProductType.READY)

    assert result == "Kopi manis yang bikin semangat!"
    assert seen["url"].endswith("/v1beta/models/gemini-2.5-flash:generateContent")
    assert seen["key"] == "test-key"
    prompt = seen["body"]["contents"][0]["parts"][0]["text"]
    assert '"Kopi Susu"' in prompt
    assert "READY" in prompt
    assert "Indonesian" in prompt


def test_missing_api_key_yields_empty_suggestion_without_network():
    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("no request expected")

    client = _client(handler, api_key="")
    assert client.draft_description("Kopi", constants.ProductType.READY) == ""
    with pytest.raises(advisor.AdvisorUnavailable):
        client.generate("hello")


@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(500, json={"error": {"message": "boom"}}),
        httpx.Response(200, json={"candidates": []}),
        httpx.Response(200, json=_answer("   ")),
        httpx.Response(200, content=b"not json"),
    ],
)
def test_failures_degrade_to_empty_string(response):
    client = _client(lambda request: response)
    assert client.summarize_sales([], "2026-03") == ""


def test_network_error_degrades_to_empty_string():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("offline", request=request)

    assert _client(handler).draft_description("Kopi", constants.ProductType.PRE_ORDER) == ""


def test_build_sales_summaries_produces_compact_digest():
    [summary] = advisor.build_sales_summaries([_transaction()])
    assert summary == {
        "date": "2026-03-15",
        "total": 72000.0,
        "items": "Kopi Susu Gula Aren, Kopi Susu Gula Aren",
    }


def test_summarize_sales_embeds_digest_and_period():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["prompt"] = json.loads(request.content)["contents"][0]["parts"][0]["text"]
        return httpx.Response(200, json=_answer("1. Penjualan naik."))

    summaries = advisor.build_sales_summaries([_transaction()])
    assert _client(handler).summarize_sales(summaries, "2026-03") == "1. Penjualan naik."
    assert "2026-03" in seen["prompt"]
    assert "Kopi Susu Gula Aren" in seen["prompt"]


def test_worker_returns_futures():
    client = _client(lambda request: httpx.Response(200, json=_answer("Enak!")))
    worker = advisor.AdvisorWorker(client)
    try:
        description = worker.request_description("Croissant", constants.ProductType.READY)
        analysis = worker.request_sales_summary([_transaction()], "2026-03")
        assert description.result(timeout=5) == "Enak!"
        assert analysis.result(timeout=5) == "Enak!"
    finally:
        worker.shutdown()


def test_settings_from_config(tmp_path):
    config = data_manager.ConfigSettings(
        data_file=tmp_path / "data.xlsx",
        store_name="Store",
        schema_version=constants.EXPECTED_SCHEMA_VERSION,
        advisor_api_key="abc",
        advisor_model="gemini-pro",
        advisor_language="English",
        advisor_timeout=3.0,
    )
    settings = advisor.AdvisorSettings.from_config(config)
    assert settings == advisor.AdvisorSettings(api_key="abc", model="gemini-pro", language="English", timeout=3.0)
    assert settings.is_configured
