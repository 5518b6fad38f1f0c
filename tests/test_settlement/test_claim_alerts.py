"""Tests for ClaimAlertDispatcher — Telegram delivery is best-effort."""

from __future__ import annotations

from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from src.settlement.alerts import ClaimAlertDispatcher


def _ok_response(status_code: int = 200) -> MagicMock:
    resp = MagicMock(spec=httpx.Response)
    resp.status_code = status_code
    return resp


@pytest.fixture
def dispatcher() -> ClaimAlertDispatcher:
    d = ClaimAlertDispatcher(telegram_bot_token="123:abc", telegram_admin_id=42)
    d._http = AsyncMock(spec=httpx.AsyncClient)
    d._http.post = AsyncMock(return_value=_ok_response())
    return d


class TestClaimAlertDispatcher:
    async def test_console_only_without_telegram(self):
        d = ClaimAlertDispatcher()
        await d.send_claim_completed(
            program="claw", beneficiary="alice", amount_sol=Decimal("0.3"), signature="sig"
        )
        assert d.total_sent == 0
        assert d._http is None

    async def test_claim_completed_sent(self, dispatcher: ClaimAlertDispatcher):
        await dispatcher.send_claim_completed(
            program="claw", beneficiary="alice", amount_sol=Decimal("0.3"), signature="5xSig"
        )

        assert dispatcher.total_sent == 1
        url = dispatcher._http.post.call_args.args[0]
        body = dispatcher._http.post.call_args.kwargs["json"]
        assert url == "https://api.telegram.org/bot123:abc/sendMessage"
        assert body["chat_id"] == 42
        assert body["parse_mode"] == "HTML"
        assert "0.3 SOL" in body["text"]
        assert "solscan.io/tx/5xSig" in body["text"]

    async def test_reconciliation_text_is_escaped(self, dispatcher: ClaimAlertDispatcher):
        await dispatcher.send_reconciliation_required(
            program="claw",
            beneficiary="alice",
            amount_sol=Decimal("1"),
            signature="sig",
            error="<script>",
        )
        text = dispatcher._http.post.call_args.kwargs["json"]["text"]
        assert "RECONCILIATION REQUIRED" in text
        assert "&lt;script&gt;" in text

    async def test_payment_unknown_sent(self, dispatcher: ClaimAlertDispatcher):
        await dispatcher.send_payment_unknown(
            program="agent",
            beneficiary="bob",
            amount_sol=Decimal("2"),
            signature="abc",
            error="timeout",
        )
        text = dispatcher._http.post.call_args.kwargs["json"]["text"]
        assert "unconfirmed" in text
        assert "abc" in text

    async def test_payment_unknown_without_signature(self, dispatcher: ClaimAlertDispatcher):
        await dispatcher.send_payment_unknown(
            program="claw",
            beneficiary="alice",
            amount_sol=Decimal("0.3"),
            signature=None,
            error="cancelled",
        )
        text = dispatcher._http.post.call_args.kwargs["json"]["text"]
        assert "<code>unknown</code>" in text

    async def test_insufficient_funds_sent(self, dispatcher: ClaimAlertDispatcher):
        await dispatcher.send_insufficient_funds(
            program="claw", balance_sol=Decimal("0.1"), required_sol=Decimal("0.31")
        )
        assert "0.31 SOL" in dispatcher._http.post.call_args.kwargs["json"]["text"]

    async def test_flood_wait_not_counted(self, dispatcher: ClaimAlertDispatcher):
        dispatcher._http.post = AsyncMock(return_value=_ok_response(429))
        await dispatcher.send_insufficient_funds(
            program="claw", balance_sol=Decimal("0"), required_sol=Decimal("1")
        )
        assert dispatcher.total_sent == 0

    async def test_http_error_swallowed(self, dispatcher: ClaimAlertDispatcher):
        dispatcher._http.post = AsyncMock(side_effect=httpx.ConnectError("down"))
        await dispatcher.send_claim_completed(
            program="claw", beneficiary="alice", amount_sol=Decimal("1"), signature="s"
        )
        assert dispatcher.total_sent == 0

    async def test_close_releases_client(self, dispatcher: ClaimAlertDispatcher):
        client = dispatcher._http
        await dispatcher.close()
        client.aclose.assert_awaited_once()
        assert dispatcher._http is None
