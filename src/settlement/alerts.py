"""Settlement alerts — console log always, Telegram when configured.

Critical alerts (ledger/on-chain divergence) are logged at CRITICAL and
sent to the admin chat. Alert transport failures never break a claim.
"""

import asyncio
import html as html_mod
import time
from decimal import Decimal

import httpx
from loguru import logger


class ClaimAlertDispatcher:
    """Dispatches claim lifecycle and reconciliation alerts."""

    def __init__(
        self,
        *,
        telegram_bot_token: str = "",
        telegram_admin_id: int = 0,
    ) -> None:
        self._telegram_token = telegram_bot_token
        self._telegram_chat_id = telegram_admin_id
        self._http: httpx.AsyncClient | None = None
        self._total_sent: int = 0
        # Telegram rate limiter: max 25 msg/sec to avoid FloodWait
        self._tg_semaphore = asyncio.Semaphore(25)
        self._tg_last_send: float = 0.0

    async def send_claim_completed(
        self,
        *,
        program: str,
        beneficiary: str,
        amount_sol: Decimal,
        signature: str,
    ) -> None:
        logger.info(
            f"[ALERT] {program} claim paid: @{beneficiary} {amount_sol} SOL sig={signature}"
        )
        await self._send_telegram_text(
            f"✅ <b>{program} claim</b> @{html_mod.escape(beneficiary)}\n"
            f"Amount: {amount_sol} SOL\n"
            f"<a href=\"https://solscan.io/tx/{signature}\">{signature[:16]}…</a>"
        )

    async def send_insufficient_funds(
        self,
        *,
        program: str,
        balance_sol: Decimal,
        required_sol: Decimal,
    ) -> None:
        logger.error(
            f"[ALERT] {program} treasury low: {balance_sol} SOL < {required_sol} SOL required"
        )
        await self._send_telegram_text(
            f"⚠️ <b>{program} treasury low</b>\n"
            f"Balance: {balance_sol} SOL\nRequired: {required_sol} SOL"
        )

    async def send_payment_unknown(
        self,
        *,
        program: str,
        beneficiary: str,
        amount_sol: Decimal,
        signature: str | None,
        error: str,
    ) -> None:
        """Transfer was submitted but never confirmed: it may still land.

        ``signature`` is None when the transfer was cancelled before it
        reported one.
        """
        sig = signature or "unknown"
        logger.critical(
            f"[ALERT] {program} payment outcome UNKNOWN for @{beneficiary}: "
            f"{amount_sol} SOL sig={sig} error={error}"
        )
        await self._send_telegram_text(
            f"🟠 <b>{program} payment unconfirmed</b> @{html_mod.escape(beneficiary)}\n"
            f"Amount: {amount_sol} SOL\nSig: <code>{sig}</code>\n"
            f"Error: {html_mod.escape(error)}\nCheck on-chain before the next claim."
        )

    async def send_reconciliation_required(
        self,
        *,
        program: str,
        beneficiary: str,
        amount_sol: Decimal,
        signature: str,
        error: str,
    ) -> None:
        """Payment landed but distribution rows were not written."""
        logger.critical(
            f"[ALERT] {program} RECONCILIATION REQUIRED @{beneficiary}: "
            f"paid {amount_sol} SOL sig={signature} but ledger write failed: {error}"
        )
        await self._send_telegram_text(
            f"🔴 <b>{program} RECONCILIATION REQUIRED</b> @{html_mod.escape(beneficiary)}\n"
            f"Paid: {amount_sol} SOL\nSig: <code>{signature}</code>\n"
            f"Ledger error: {html_mod.escape(error)}"
        )

    async def _send_telegram_text(self, text: str) -> None:
        """Send raw HTML text to Telegram with rate limiting."""
        if not self._telegram_token or not self._telegram_chat_id:
            return

        async with self._tg_semaphore:
            # Enforce minimum 40ms between messages (25 msg/sec)
            now = time.monotonic()
            elapsed = now - self._tg_last_send
            if elapsed < 0.04:
                await asyncio.sleep(0.04 - elapsed)

            try:
                if not self._http:
                    self._http = httpx.AsyncClient(timeout=10)

                url = f"https://api.telegram.org/bot{self._telegram_token}/sendMessage"
                resp = await self._http.post(
                    url,
                    json={
                        "chat_id": self._telegram_chat_id,
                        "text": text,
                        "parse_mode": "HTML",
                        "disable_web_page_preview": True,
                    },
                )
                self._tg_last_send = time.monotonic()
                if resp.status_code == 429:
                    logger.warning("[ALERT] Telegram FloodWait, message dropped")
                    return
                self._total_sent += 1
            except httpx.HTTPError as e:
                logger.warning(f"[ALERT] Telegram send failed: {e}")

    @property
    def total_sent(self) -> int:
        return self._total_sent

    async def close(self) -> None:
        if self._http:
            await self._http.aclose()
            self._http = None
