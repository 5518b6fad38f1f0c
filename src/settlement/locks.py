"""Claim lock stores — one atomic conditional write per acquisition.

Both backends treat an expired lock as absent, so a crashed claim handler
blocks its beneficiary for at most ``ttl_sec``. ``try_acquire`` hands the
owner token back to the caller; ``release`` deletes only while that token
still owns the key, so a late release never frees a newer holder.
"""

from __future__ import annotations

import uuid
from datetime import timedelta
from typing import TYPE_CHECKING

from loguru import logger
from sqlalchemy import delete, func
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.models.ledger import ClaimLock

if TYPE_CHECKING:
    from redis.asyncio import Redis

# Delete only if we still own the key (it may have expired and been re-acquired)
_RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
end
return 0
"""


class RedisLockStore:
    """SET key token NX EX ttl."""

    def __init__(self, redis: Redis, *, prefix: str = "lock:") -> None:
        self._redis = redis
        self._prefix = prefix
        self._release_script = redis.register_script(_RELEASE_SCRIPT)

    async def try_acquire(self, key: str, ttl_sec: int) -> str | None:
        token = uuid.uuid4().hex
        acquired = await self._redis.set(f"{self._prefix}{key}", token, nx=True, ex=ttl_sec)
        if acquired:
            logger.debug(f"[LOCK] Acquired {key} for {ttl_sec}s")
            return token
        logger.debug(f"[LOCK] {key} is held by another claim")
        return None

    async def release(self, key: str, token: str) -> None:
        released = await self._release_script(keys=[f"{self._prefix}{key}"], args=[token])
        if not released:
            logger.warning(f"[LOCK] {key} expired before release")


class SqlLockStore:
    """claim_locks row per (program, key); upsert only replaces expired rows.

    INSERT ... ON CONFLICT DO UPDATE ... WHERE expires_at <= now() RETURNING id
    returns a row only when we inserted or took over an expired lock.
    Expiry uses the database clock so workers with skewed clocks agree.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession], program: str) -> None:
        self._session_factory = session_factory
        self._program = program

    async def try_acquire(self, key: str, ttl_sec: int) -> str | None:
        token = uuid.uuid4().hex
        expires_at = func.now() + timedelta(seconds=ttl_sec)
        stmt = pg_insert(ClaimLock).values(
            program=self._program,
            lock_key=key,
            holder=token,
            expires_at=expires_at,
        )
        stmt = stmt.on_conflict_do_update(
            constraint="uq_claim_locks_program_key",
            set_={
                "holder": stmt.excluded.holder,
                "expires_at": stmt.excluded.expires_at,
                "acquired_at": func.now(),
            },
            where=ClaimLock.expires_at <= func.now(),
        ).returning(ClaimLock.id)

        async with self._session_factory() as session:
            async with session.begin():
                result = await session.execute(stmt)
                acquired = result.first() is not None

        if not acquired:
            return None
        logger.debug(f"[LOCK] Acquired {self._program}/{key} for {ttl_sec}s")
        return token

    async def release(self, key: str, token: str) -> None:
        async with self._session_factory() as session:
            async with session.begin():
                result = await session.execute(
                    delete(ClaimLock).where(
                        ClaimLock.program == self._program,
                        ClaimLock.lock_key == key,
                        ClaimLock.holder == token,
                    )
                )
        if result.rowcount == 0:
            logger.warning(f"[LOCK] {self._program}/{key} expired before release")
