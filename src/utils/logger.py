import re
import sys
from collections.abc import Iterable
from pathlib import Path

from loguru import logger

# Component tags whose records form the settlement audit trail
SETTLEMENT_TAGS = ("[CLAIM]", "[TREASURY]", "[LOCK]", "[ALERT]")

REDACTED = "<redacted>"

# A 64-byte keypair written as a JSON array, e.g. a pasted id.json
_KEYPAIR_ARRAY = re.compile(r"\[\s*\d{1,3}(?:\s*,\s*\d{1,3}){63}\s*\]")


def _is_settlement_record(record) -> bool:
    return record["message"].startswith(SETTLEMENT_TAGS)


def make_redactor(secrets: Iterable[str]):
    """Build a loguru patcher that scrubs treasury secrets from messages.

    Configured secrets are replaced verbatim. Anything shaped like a keypair
    byte array is replaced too, whatever key it belongs to.
    """
    known = sorted({s for s in secrets if s}, key=len, reverse=True)

    def _redact(record) -> None:
        message = record["message"]
        for secret in known:
            if secret in message:
                message = message.replace(secret, REDACTED)
        record["message"] = _KEYPAIR_ARRAY.sub(REDACTED, message)

    return _redact


def setup_logger(
    *,
    json_logs: bool = False,
    level: str = "INFO",
    log_dir: str | Path = "logs",
    settlement_retention_days: int = 90,
    secrets: Iterable[str] = (),
) -> None:
    """Configure loguru for the launchpad API.

    Three sinks:
    - console at ``level``
    - ``launchpad_*.log``: everything at DEBUG, kept a few days
    - ``settlement_*.log``: only claim/treasury/lock/alert records at INFO,
      kept ``settlement_retention_days`` for payout reconciliation

    Every record passes through the secret redactor first, so a treasury key
    that ends up in an exception message never reaches a sink.
    """
    log_dir = Path(log_dir)
    logger.remove()
    logger.configure(patcher=make_redactor(secrets))

    if json_logs:
        logger.add(sys.stdout, serialize=True, level=level.upper())
    else:
        logger.add(
            sys.stdout,
            format=(
                "<green>{time:HH:mm:ss}</green> | "
                "<level>{level: <8}</level> | "
                "<cyan>{name}</cyan>:<cyan>{function}</cyan> - "
                "<level>{message}</level>"
            ),
            level=level.upper(),
            colorize=True,
        )

    logger.add(
        str(log_dir / "launchpad_{time:YYYY-MM-DD}.log"),
        rotation="50 MB",
        retention="3 days",
        compression="gz",
        level="DEBUG",
        serialize=json_logs,
    )
    logger.add(
        str(log_dir / "settlement_{time:YYYY-MM-DD}.log"),
        rotation="00:00",
        retention=f"{settlement_retention_days} days",
        compression="gz",
        level="INFO",
        filter=_is_settlement_record,
        serialize=json_logs,
    )
