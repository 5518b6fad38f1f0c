"""Entry point for the launchpad quote and claim API."""

import asyncio
import signal

from loguru import logger

from config.settings import Settings, settings
from src.api.registry import registry
from src.api.server import build_server, run_api_server
from src.db.database import async_session_factory, close_engine
from src.db.redis import close_redis, get_redis
from src.settlement.alerts import ClaimAlertDispatcher
from src.settlement.ledger import FeeSettlementLedger
from src.settlement.locks import RedisLockStore, SqlLockStore
from src.settlement.programs import AGENT_PROGRAM, CLAW_PROGRAM, program_from_settings
from src.settlement.sql_store import SqlLedgerStore, SqlTokenScopeResolver
from src.settlement.stores import LockStore
from src.trading.treasury import TreasuryPayer
from src.utils.logger import setup_logger


def _treasury_secret(program: str, cfg: Settings) -> str:
    if program == CLAW_PROGRAM and cfg.claw_treasury_private_key:
        return cfg.claw_treasury_private_key
    return cfg.treasury_private_key


async def build_ledgers(cfg: Settings, alerts: ClaimAlertDispatcher) -> list[FeeSettlementLedger]:
    """Wire one settlement ledger per claim program with a configured treasury."""
    redis = await get_redis(cfg.redis_url) if cfg.lock_backend == "redis" else None
    registry.redis = redis

    ledgers: list[FeeSettlementLedger] = []
    for name in (AGENT_PROGRAM, CLAW_PROGRAM):
        secret = _treasury_secret(name, cfg)
        if not secret:
            logger.warning(f"[MAIN] No treasury key for '{name}' program, claims disabled")
            continue

        payer = TreasuryPayer.from_secret(secret, cfg.solana_rpc_url, label=f"{name}-treasury")
        registry.closers.append(payer)

        locks: LockStore
        if redis is not None:
            locks = RedisLockStore(redis, prefix=f"lock:{name}:")
        else:
            locks = SqlLockStore(async_session_factory, name)

        program = program_from_settings(name, cfg)
        ledgers.append(
            FeeSettlementLedger(
                program=program,
                ledger=SqlLedgerStore(async_session_factory, name),
                locks=locks,
                payer=payer,
                scope_resolver=SqlTokenScopeResolver(async_session_factory, name),
                alert_dispatcher=alerts,
            )
        )
        logger.info(
            f"[MAIN] Claim program '{name}' ready: share={program.creator_share_pct} "
            f"min={program.min_claim_sol} cooldown={program.cooldown_sec}s "
            f"treasury={payer.pubkey_str} locks={cfg.lock_backend}"
        )
    return ledgers


async def main() -> None:
    setup_logger(
        json_logs=settings.log_json,
        level=settings.log_level,
        log_dir=settings.log_dir,
        settlement_retention_days=settings.settlement_log_retention_days,
        secrets=(settings.treasury_private_key, settings.claw_treasury_private_key),
    )
    logger.info("Starting launchpad API...")

    alerts = ClaimAlertDispatcher(
        telegram_bot_token=settings.telegram_bot_token,
        telegram_admin_id=settings.telegram_admin_id,
    )
    registry.closers.append(alerts)
    for ledger in await build_ledgers(settings, alerts):
        registry.register_ledger(ledger)

    # Graceful shutdown on SIGINT/SIGTERM
    loop = asyncio.get_running_loop()
    shutdown_event = asyncio.Event()

    def _signal_handler() -> None:
        logger.info("Shutdown signal received")
        shutdown_event.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, _signal_handler)

    server = build_server()
    server_task = asyncio.create_task(run_api_server(server))

    # Wait for either the server to exit or a shutdown signal
    await asyncio.wait(
        [server_task, asyncio.create_task(shutdown_event.wait())],
        return_when=asyncio.FIRST_COMPLETED,
    )

    # Let in-flight claims finish so their locks are released
    server.should_exit = True
    try:
        await asyncio.wait_for(server_task, timeout=30)
    except (asyncio.TimeoutError, asyncio.CancelledError):
        logger.warning("[MAIN] API server did not stop in time")

    for closer in registry.closers:
        await closer.close()
    registry.clear()
    await close_redis()
    await close_engine()
    logger.info("Shutdown complete")


if __name__ == "__main__":
    asyncio.run(main())
