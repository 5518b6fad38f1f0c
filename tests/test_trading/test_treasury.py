"""Tests for TreasuryPayer — key loading, balance queries, SOL transfers.

All HTTP calls are mocked via httpx.AsyncClient patching.
"""

from __future__ import annotations

import json
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest
from solders.keypair import Keypair  # type: ignore[import-untyped]

from src.trading.treasury import (
    LAMPORTS_PER_SOL,
    TreasuryPayer,
    is_valid_address,
    load_keypair,
    sol_to_lamports,
)


# ── Fixtures ───────────────────────────────────────────────────────────

RPC_URL = "https://api.mainnet-beta.solana.com"
RECIPIENT = str(Keypair().pubkey())


def _rpc_response(result=None, *, error=None, status_code: int = 200) -> MagicMock:
    resp = MagicMock(spec=httpx.Response)
    resp.status_code = status_code
    body: dict = {"jsonrpc": "2.0", "id": 1}
    if error is not None:
        body["error"] = error
    else:
        body["result"] = result
    resp.json.return_value = body
    return resp


@pytest.fixture
def payer() -> TreasuryPayer:
    p = TreasuryPayer(Keypair(), RPC_URL, label="claw-treasury")
    p._http = AsyncMock(spec=httpx.AsyncClient)
    return p


# ── Key loading ────────────────────────────────────────────────────────


class TestLoadKeypair:
    def test_base58(self):
        kp = Keypair()
        assert load_keypair(str(kp)).pubkey() == kp.pubkey()

    def test_json_byte_array(self):
        kp = Keypair()
        secret = json.dumps(list(bytes(kp)))
        assert load_keypair(secret).pubkey() == kp.pubkey()

    def test_surrounding_whitespace(self):
        kp = Keypair()
        assert load_keypair(f"  {kp}\n").pubkey() == kp.pubkey()

    def test_empty_raises(self):
        with pytest.raises(ValueError, match="empty"):
            load_keypair("   ")

    @pytest.mark.parametrize("bad", ["not-base58-0OIl", "[1, 2, 3]", "[not json"])
    def test_invalid_raises(self, bad):
        with pytest.raises(ValueError, match="Invalid treasury private key"):
            load_keypair(bad)


class TestHelpers:
    def test_valid_address(self):
        assert is_valid_address(RECIPIENT)
        assert not is_valid_address("nope")
        assert not is_valid_address("")

    def test_sol_to_lamports_rounds_down(self):
        assert sol_to_lamports(Decimal("1")) == LAMPORTS_PER_SOL
        assert sol_to_lamports(Decimal("0.0000000019")) == 1
        assert sol_to_lamports(Decimal("0.0000000009")) == 0


# ── Initialization ─────────────────────────────────────────────────────


class TestTreasuryInit:
    def test_empty_rpc_url_raises(self):
        with pytest.raises(ValueError, match="RPC URL is empty"):
            TreasuryPayer(Keypair(), "")

    def test_from_secret(self):
        kp = Keypair()
        p = TreasuryPayer.from_secret(str(kp), RPC_URL)
        assert p.pubkey == kp.pubkey()

    def test_repr_shows_pubkey_only(self):
        kp = Keypair()
        p = TreasuryPayer(kp, RPC_URL, label="agent-treasury")
        r = repr(p)
        assert "agent-treasury" in r
        assert p.pubkey_str in r
        assert str(kp) not in r


# ── get_balance ────────────────────────────────────────────────────────


class TestGetBalance:
    async def test_balance_in_sol(self, payer: TreasuryPayer):
        payer._http.post = AsyncMock(return_value=_rpc_response({"value": 2_500_000_000}))
        assert await payer.get_balance() == Decimal("2.5")
        params = payer._http.post.call_args.kwargs["json"]["params"]
        assert params[0] == payer.pubkey_str

    async def test_balance_of_other_address(self, payer: TreasuryPayer):
        payer._http.post = AsyncMock(return_value=_rpc_response({"value": 1}))
        assert await payer.get_balance(RECIPIENT) == Decimal("0.000000001")
        assert payer._http.post.call_args.kwargs["json"]["params"][0] == RECIPIENT

    async def test_http_error_returns_zero(self, payer: TreasuryPayer):
        payer._http.post = AsyncMock(return_value=_rpc_response(status_code=503))
        assert await payer.get_balance() == 0

    async def test_rpc_error_returns_zero(self, payer: TreasuryPayer):
        payer._http.post = AsyncMock(
            return_value=_rpc_response(error={"code": -32600, "message": "Invalid request"})
        )
        assert await payer.get_balance() == 0

    async def test_timeout_returns_zero(self, payer: TreasuryPayer):
        payer._http.post = AsyncMock(side_effect=httpx.TimeoutException("timeout"))
        assert await payer.get_balance() == 0


# ── transfer ───────────────────────────────────────────────────────────


BLOCKHASH = {"value": {"blockhash": "11111111111111111111111111111111"}}


class TestTransfer:
    async def test_amount_below_one_lamport(self, payer: TreasuryPayer):
        result = await payer.transfer(RECIPIENT, Decimal("0.0000000001"))
        assert not result.success
        assert "too small" in result.error
        payer._http.post.assert_not_called()

    async def test_invalid_recipient(self, payer: TreasuryPayer):
        result = await payer.transfer("bad-address", Decimal("1"))
        assert not result.success
        assert "Invalid recipient" in result.error

    async def test_confirmed_transfer(self, payer: TreasuryPayer):
        payer._http.post = AsyncMock(
            side_effect=[
                _rpc_response(BLOCKHASH),
                _rpc_response("5xSignature"),
                _rpc_response({"value": [{"err": None, "confirmationStatus": "confirmed"}]}),
            ]
        )

        result = await payer.transfer(RECIPIENT, Decimal("0.3"))

        assert result.success
        assert result.signature == "5xSignature"
        assert not result.outcome_unknown
        send = payer._http.post.call_args_list[1].kwargs["json"]
        assert send["method"] == "sendTransaction"
        assert send["params"][1]["encoding"] == "base64"

    async def test_rpc_rejection_is_definitive(self, payer: TreasuryPayer):
        payer._http.post = AsyncMock(
            side_effect=[
                _rpc_response(BLOCKHASH),
                _rpc_response(error={"code": -32002, "message": "insufficient funds for fee"}),
            ]
        )

        result = await payer.transfer(RECIPIENT, Decimal("0.3"))

        assert not result.success
        assert not result.outcome_unknown
        assert result.signature is None

    async def test_transport_failure_is_unknown(self, payer: TreasuryPayer):
        payer._http.post = AsyncMock(
            side_effect=[
                _rpc_response(BLOCKHASH),
                httpx.ConnectError("refused"),
                httpx.ConnectError("refused"),
                httpx.ConnectError("refused"),
            ]
        )

        with patch("src.trading.treasury.asyncio.sleep", new=AsyncMock()):
            result = await payer.transfer(RECIPIENT, Decimal("0.3"))

        assert not result.success
        assert result.outcome_unknown
        assert result.signature  # pre-computed signature for manual lookup

    async def test_failed_on_chain(self, payer: TreasuryPayer):
        payer._http.post = AsyncMock(
            side_effect=[
                _rpc_response(BLOCKHASH),
                _rpc_response("5xSignature"),
                _rpc_response({"value": [{"err": {"InstructionError": [0, "Custom"]}}]}),
            ]
        )

        result = await payer.transfer(RECIPIENT, Decimal("0.3"))

        assert not result.success
        assert not result.outcome_unknown
        assert result.error == "Transaction failed on-chain"

    async def test_confirmation_timeout_is_unknown(self, payer: TreasuryPayer):
        pending = _rpc_response({"value": [None]})
        payer._http.post = AsyncMock(
            side_effect=[_rpc_response(BLOCKHASH), _rpc_response("5xSignature")] + [pending] * 200
        )

        with patch("src.trading.treasury.asyncio.sleep", new=AsyncMock()):
            result = await payer.transfer(RECIPIENT, Decimal("0.3"))

        assert not result.success
        assert result.outcome_unknown
        assert result.signature == "5xSignature"

    async def test_blockhash_failure(self, payer: TreasuryPayer):
        payer._http.post = AsyncMock(side_effect=httpx.ConnectError("refused"))
        result = await payer.transfer(RECIPIENT, Decimal("0.3"))
        assert not result.success
        assert "build/sign failed" in result.error
        assert not result.outcome_unknown

    async def test_zero_budget_sends_nothing(self, payer: TreasuryPayer):
        result = await payer.transfer(RECIPIENT, Decimal("0.3"), timeout=0)
        assert not result.success
        assert not result.outcome_unknown
        payer._http.post.assert_not_called()

    async def test_deadline_cuts_confirmation_short(self, payer: TreasuryPayer):
        pending = _rpc_response({"value": [None]})
        payer._http.post = AsyncMock(
            side_effect=[_rpc_response(BLOCKHASH), _rpc_response("5xSignature")] + [pending] * 200
        )

        with patch("src.trading.treasury.asyncio.sleep", new=AsyncMock()):
            result = await payer.transfer(RECIPIENT, Decimal("0.3"), timeout=5)

        assert result.outcome_unknown
        assert result.signature == "5xSignature"
        calls = payer._http.post.call_args_list
        polls = [c for c in calls if c.kwargs["json"]["method"] == "getSignatureStatuses"]
        assert len(polls) <= 3
        assert all(c.kwargs["timeout"] <= 5 for c in calls)

    async def test_send_retries_stop_at_deadline(self, payer: TreasuryPayer):
        payer._http.post = AsyncMock(
            side_effect=[_rpc_response(BLOCKHASH)] + [httpx.ConnectError("refused")] * 3
        )

        with patch("src.trading.treasury.asyncio.sleep", new=AsyncMock()):
            result = await payer.transfer(RECIPIENT, Decimal("0.3"), timeout=2)

        assert result.outcome_unknown
        # blockhash + two sends: the 3s backoff before a third would pass the deadline
        assert payer._http.post.call_count == 3

    async def test_close(self, payer: TreasuryPayer):
        await payer.close()
        payer._http.aclose.assert_awaited_once()
