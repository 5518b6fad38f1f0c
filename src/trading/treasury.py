"""Treasury payer — SOL balance checks and SystemProgram transfers.

Private key is loaded ONCE at startup and never logged or exposed.
Only the public key is shown in logs and __repr__.

Transfer pipeline (same landing strategy as swaps):
  1. getLatestBlockhash from our RPC
  2. Build MessageV0 with a single SystemProgram.transfer, sign
  3. sendTransaction
  4. Poll getSignatureStatuses with periodic resend until confirmed

The whole pipeline runs against one deadline (``timeout``): every RPC call
is bounded by the time left, so a caller holding an expiring lock gets an
answer before the lock runs out.

A transfer is never retried with a new blockhash: a second signature
could double-pay if the first one lands late.
"""

from __future__ import annotations

import asyncio
import base64
import json
import time
from decimal import ROUND_DOWN, Decimal

import base58
import httpx
from loguru import logger
from solders.hash import Hash  # type: ignore[import-untyped]
from solders.keypair import Keypair  # type: ignore[import-untyped]
from solders.message import MessageV0  # type: ignore[import-untyped]
from solders.pubkey import Pubkey  # type: ignore[import-untyped]
from solders.system_program import TransferParams, transfer  # type: ignore[import-untyped]
from solders.transaction import VersionedTransaction  # type: ignore[import-untyped]

from src.settlement.types import TransferResult

LAMPORTS_PER_SOL = 1_000_000_000

HTTP_TIMEOUT = 30.0  # seconds, per RPC request
DEFAULT_TRANSFER_TIMEOUT = 90.0  # seconds, send + confirmation
MIN_REQUEST_TIMEOUT = 0.5

MAX_RETRIES = 2
RETRY_DELAYS = [1.0, 3.0]

# Confirmation polling
CONFIRM_POLL_INTERVAL = 2.0  # seconds
CONFIRM_TIMEOUT = 60  # seconds
RESEND_INTERVAL = 4.0  # seconds


def load_keypair(secret: str) -> Keypair:
    """Accept base58 or a JSON byte array (``[12, 34, ...]``)."""
    secret = secret.strip()
    if not secret:
        raise ValueError("Treasury private key is empty")
    try:
        if secret.startswith("["):
            raw = bytes(json.loads(secret))
        else:
            raw = base58.b58decode(secret)
        return Keypair.from_bytes(raw)
    except (ValueError, TypeError) as e:
        raise ValueError("Invalid treasury private key") from e


def is_valid_address(address: str) -> bool:
    try:
        Pubkey.from_string(address)
    except ValueError:
        return False
    return True


def sol_to_lamports(amount_sol: Decimal) -> int:
    return int((amount_sol * LAMPORTS_PER_SOL).to_integral_value(rounding=ROUND_DOWN))


class TreasuryPayer:
    """Pays creator claims from a treasury keypair."""

    def __init__(self, keypair: Keypair, rpc_url: str, *, label: str = "treasury") -> None:
        if not rpc_url:
            raise ValueError("RPC URL is empty")

        self._keypair = keypair
        self._rpc_url = rpc_url
        self._label = label
        self._http = httpx.AsyncClient(timeout=HTTP_TIMEOUT)
        logger.info(f"[TREASURY] Loaded {label} wallet: {self.pubkey_str}")

    @classmethod
    def from_secret(cls, secret: str, rpc_url: str, *, label: str = "treasury") -> TreasuryPayer:
        return cls(load_keypair(secret), rpc_url, label=label)

    def __repr__(self) -> str:
        return f"TreasuryPayer(label={self._label}, pubkey={self.pubkey_str})"

    @property
    def pubkey(self) -> Pubkey:
        return self._keypair.pubkey()

    @property
    def pubkey_str(self) -> str:
        return str(self._keypair.pubkey())

    async def get_balance(self, address: str | None = None) -> Decimal:
        """SOL balance (treasury by default). Returns 0 on error so payouts fail closed."""
        target = address or self.pubkey_str
        try:
            payload = {
                "jsonrpc": "2.0",
                "id": 1,
                "method": "getBalance",
                "params": [target, {"commitment": "confirmed"}],
            }
            resp = await self._http.post(self._rpc_url, json=payload)
            if resp.status_code != 200:
                logger.warning(f"[TREASURY] getBalance HTTP {resp.status_code}")
                return Decimal("0")

            data = resp.json()
            if "error" in data:
                logger.warning(f"[TREASURY] getBalance error: {data['error']}")
                return Decimal("0")

            lamports = data.get("result", {}).get("value", 0)
            return Decimal(lamports) / Decimal(LAMPORTS_PER_SOL)

        except (httpx.TimeoutException, httpx.ConnectError) as e:
            logger.warning(f"[TREASURY] getBalance failed: {e}")
            return Decimal("0")

    async def transfer(
        self,
        to_address: str,
        amount_sol: Decimal,
        *,
        timeout: float | None = None,
    ) -> TransferResult:
        """Send ``amount_sol`` to ``to_address`` and wait for confirmation.

        ``timeout`` bounds the whole pipeline. Once it passes after the TX
        was sent, the result is ``outcome_unknown`` with the signature.
        """
        lamports = sol_to_lamports(amount_sol)
        if lamports <= 0:
            return TransferResult(success=False, error=f"Amount too small: {amount_sol} SOL")
        if not is_valid_address(to_address):
            return TransferResult(success=False, error=f"Invalid recipient: {to_address}")

        budget = DEFAULT_TRANSFER_TIMEOUT if timeout is None else timeout
        if budget <= 0:
            return TransferResult(success=False, error="No time left to send transfer")
        deadline = time.monotonic() + budget

        logger.info(f"[TREASURY] Sending {amount_sol} SOL to {to_address[:12]}… (deadline {budget:.0f}s)")

        try:
            tx_b64, tx_sig = await self._build_and_sign_tx(to_address, lamports, deadline)
        except (httpx.HTTPError, KeyError, TypeError, ValueError) as e:
            return TransferResult(success=False, error=f"TX build/sign failed: {e}")
        if time.monotonic() >= deadline:
            return TransferResult(success=False, error="Deadline passed before sendTransaction")

        sent_hash, rejected = await self._send_raw_transaction(tx_b64, deadline)
        if sent_hash is None:
            if rejected:
                return TransferResult(success=False, error="Transaction rejected by RPC preflight")
            # Transport failure: the RPC may have forwarded it anyway
            return TransferResult(
                success=False,
                signature=tx_sig,
                error="sendTransaction RPC failed",
                outcome_unknown=True,
            )

        confirm_timeout = min(CONFIRM_TIMEOUT, deadline - time.monotonic())
        status = await self._wait_for_confirmation_with_resend(
            sent_hash, tx_b64, timeout=confirm_timeout, deadline=deadline
        )
        if status == "confirmed":
            logger.info(f"[TREASURY] Transfer confirmed: {sent_hash}")
            return TransferResult(success=True, signature=sent_hash)
        if status == "failed":
            return TransferResult(success=False, signature=sent_hash, error="Transaction failed on-chain")
        return TransferResult(
            success=False,
            signature=sent_hash,
            error=f"Confirmation timeout ({max(confirm_timeout, 0):.0f}s)",
            outcome_unknown=True,
        )

    @staticmethod
    def _request_timeout(deadline: float) -> float:
        """Per-request httpx timeout: the time left, within [MIN, HTTP_TIMEOUT]."""
        return max(MIN_REQUEST_TIMEOUT, min(HTTP_TIMEOUT, deadline - time.monotonic()))

    # ─── TX building ─────────────────────────────────────────────────

    async def _build_and_sign_tx(
        self, to_address: str, lamports: int, deadline: float
    ) -> tuple[str, str]:
        """Returns (tx_base64, tx_signature_string)."""
        ix = transfer(
            TransferParams(
                from_pubkey=self.pubkey,
                to_pubkey=Pubkey.from_string(to_address),
                lamports=lamports,
            )
        )

        bh_payload = {
            "jsonrpc": "2.0",
            "id": 1,
            "method": "getLatestBlockhash",
            "params": [{"commitment": "finalized"}],
        }
        resp = await self._http.post(
            self._rpc_url, json=bh_payload, timeout=self._request_timeout(deadline)
        )
        bh_data = resp.json()["result"]["value"]
        blockhash = Hash.from_string(bh_data["blockhash"])

        msg = MessageV0.try_compile(
            payer=self.pubkey,
            instructions=[ix],
            address_lookup_table_accounts=[],
            recent_blockhash=blockhash,
        )
        tx = VersionedTransaction(msg, [self._keypair])
        tx_b64 = base64.b64encode(bytes(tx)).decode("ascii")
        return tx_b64, str(tx.signatures[0])

    # ─── RPC methods ─────────────────────────────────────────────────

    async def _send_raw_transaction(
        self, tx_b64: str, deadline: float
    ) -> tuple[str | None, bool]:
        """sendTransaction; resending the same signed bytes is idempotent.

        Returns (signature, rejected). ``rejected`` is True only when the RPC
        answered with an error (preflight failed, nothing was submitted).
        Retries stop once the next attempt would start past ``deadline``.
        """
        payload = {
            "jsonrpc": "2.0",
            "id": 1,
            "method": "sendTransaction",
            "params": [
                tx_b64,
                {
                    "encoding": "base64",
                    "skipPreflight": False,
                    "preflightCommitment": "confirmed",
                    "maxRetries": 5,
                },
            ],
        }

        for attempt in range(MAX_RETRIES + 1):
            try:
                resp = await self._http.post(
                    self._rpc_url, json=payload, timeout=self._request_timeout(deadline)
                )
                if resp.status_code != 200:
                    logger.warning(f"[TREASURY] sendTransaction HTTP {resp.status_code}")
                    delay = RETRY_DELAYS[min(attempt, len(RETRY_DELAYS) - 1)]
                    if attempt < MAX_RETRIES and time.monotonic() + delay < deadline:
                        await asyncio.sleep(delay)
                        continue
                    return None, False

                data = resp.json()
                if "error" in data:
                    error = data["error"]
                    code = error.get("code", "?")
                    msg = error.get("message", str(error))
                    logger.warning(f"[TREASURY] sendTransaction RPC error {code}: {msg}")
                    return None, True

                result = data.get("result")
                return (str(result), False) if result else (None, False)

            except (httpx.TimeoutException, httpx.ConnectError) as e:
                delay = RETRY_DELAYS[min(attempt, len(RETRY_DELAYS) - 1)]
                if attempt < MAX_RETRIES and time.monotonic() + delay < deadline:
                    logger.debug(f"[TREASURY] sendTransaction {type(e).__name__}, retry in {delay}s")
                    await asyncio.sleep(delay)
                else:
                    logger.warning(f"[TREASURY] sendTransaction failed after retries: {e}")
                    return None, False

        return None, False

    async def _wait_for_confirmation_with_resend(
        self,
        tx_hash: str,
        tx_b64: str,
        timeout: float = CONFIRM_TIMEOUT,
        deadline: float | None = None,
    ) -> str:
        """Poll getSignatureStatuses, resending the same TX periodically.

        Stops after ``timeout`` seconds of polling or at ``deadline``
        (monotonic), whichever comes first.

        Returns "confirmed", "failed" or "timeout".
        """
        status_payload = {
            "jsonrpc": "2.0",
            "id": 1,
            "method": "getSignatureStatuses",
            "params": [[tx_hash], {"searchTransactionHistory": True}],
        }
        send_payload = {
            "jsonrpc": "2.0",
            "id": 1,
            "method": "sendTransaction",
            "params": [tx_b64, {"encoding": "base64", "skipPreflight": True, "maxRetries": 0}],
        }

        if deadline is None:
            deadline = time.monotonic() + timeout

        elapsed = 0.0
        last_resend = 0.0
        while elapsed < timeout and time.monotonic() < deadline:
            try:
                resp = await self._http.post(
                    self._rpc_url, json=status_payload, timeout=self._request_timeout(deadline)
                )
                if resp.status_code == 200:
                    statuses = resp.json().get("result", {}).get("value", [])
                    if statuses and statuses[0] is not None:
                        status = statuses[0]
                        if status.get("err"):
                            logger.warning(
                                f"[TREASURY] TX {tx_hash[:16]} error on-chain: {status['err']}"
                            )
                            return "failed"
                        if status.get("confirmationStatus") in ("confirmed", "finalized"):
                            return "confirmed"
            except (httpx.TimeoutException, httpx.ConnectError):
                pass

            if elapsed - last_resend >= RESEND_INTERVAL and elapsed < timeout - 5:
                try:
                    await self._http.post(
                        self._rpc_url, json=send_payload, timeout=self._request_timeout(deadline)
                    )
                    last_resend = elapsed
                except httpx.HTTPError:
                    pass  # best-effort resend

            await asyncio.sleep(CONFIRM_POLL_INTERVAL)
            elapsed += CONFIRM_POLL_INTERVAL

        logger.warning(f"[TREASURY] TX {tx_hash[:16]} confirmation timeout after {elapsed:.0f}s")
        return "timeout"

    async def close(self) -> None:
        await self._http.aclose()
