"""Email/phone verification codes with expiry and supersession.

Storage:
  - In development and tests: InMemoryCodeStore (a dict).
  - In production: RedisCodeStore, one JSON record per (purpose, target).

Flow:
  1. Client calls POST /api/verification/send with a target and purpose.
  2. We generate a 6-digit code, send it by email or SMS, and only then
     store it as the authoritative code for (purpose, target). Any earlier
     code for the pair is superseded.
  3. Client calls POST /api/verification/verify with the code.
  4. On success the code is marked consumed; it can never verify again.

Each code moves NoCode → Issued → Consumed | Expired | Superseded.
Expiry is a timestamp checked at verification time, not a timer.
"""

import logging
import secrets
import string
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable

import redis.asyncio as redis
from pydantic import ValidationError

from printerp.auth.dispatch import CodeDispatcher
from printerp.config import Settings
from printerp.middleware.exceptions import BusinessLogicError
from printerp.schemas.verification import (
    RejectReason,
    VerificationCode,
    VerificationPurpose,
    normalize_target,
)

logger = logging.getLogger("printerp.auth.verification")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def mask_target(target: str) -> str:
    """a***@example.com / +63917***4567"""
    if "@" in target:
        local, _, domain = target.partition("@")
        return f"{local[:1]}***@{domain}"
    return f"{target[:6]}***{target[-4:]}"


@dataclass
class VerificationResult:
    ok: bool
    reason: RejectReason | None = None
    code: VerificationCode | None = None

    @property
    def can_resend(self) -> bool:
        return self.reason in (RejectReason.NOT_FOUND, RejectReason.EXPIRED)


# ── Stores ──────────────────────────────────────────────────


class CodeStore(ABC):
    """Holds the authoritative code per (purpose, target)."""

    @abstractmethod
    async def get(self, purpose: VerificationPurpose, target: str) -> VerificationCode | None:
        ...

    @abstractmethod
    async def put(self, record: VerificationCode) -> None:
        """Make `record` the authoritative code for its pair."""

    @abstractmethod
    async def save(self, record: VerificationCode) -> bool:
        """Write back a mutated record, but only while it is still authoritative.

        Returns False when another code has superseded it in the meantime.
        """


class InMemoryCodeStore(CodeStore):
    def __init__(self):
        self._codes: dict[tuple[str, str], VerificationCode] = {}

    async def get(self, purpose, target):
        record = self._codes.get((purpose.value, target))
        return record.model_copy() if record else None

    async def put(self, record):
        self._codes[(record.purpose.value, record.target)] = record.model_copy()

    async def save(self, record):
        key = (record.purpose.value, record.target)
        current = self._codes.get(key)
        if current is None or current.id != record.id:
            return False
        self._codes[key] = record.model_copy()
        return True


class RedisCodeStore(CodeStore):
    """Codes as JSON strings under verify:{purpose}:{target}.

    The key TTL only keeps Redis tidy; it is longer than the code expiry
    so that consumed codes remain visible for `is_verified`.
    """

    def __init__(self, client: redis.Redis, ttl_seconds: int, prefix: str = "verify"):
        self.redis = client
        self.ttl_seconds = ttl_seconds
        self.prefix = prefix

    def _key(self, purpose: VerificationPurpose, target: str) -> str:
        return f"{self.prefix}:{purpose.value}:{target}"

    async def get(self, purpose, target):
        key = self._key(purpose, target)
        raw = await self.redis.get(key)
        if not raw:
            return None
        try:
            return VerificationCode.model_validate_json(raw)
        except ValidationError:
            logger.warning(f"Discarding unreadable verification record at {key}")
            await self.redis.delete(key)
            return None

    async def put(self, record):
        await self.redis.set(
            self._key(record.purpose, record.target),
            record.model_dump_json(),
            ex=self.ttl_seconds,
        )

    async def save(self, record):
        key = self._key(record.purpose, record.target)
        async with self.redis.pipeline(transaction=True) as pipe:
            try:
                await pipe.watch(key)
                raw = await pipe.get(key)
                if not raw or VerificationCode.model_validate_json(raw).id != record.id:
                    return False
                pipe.multi()
                pipe.set(key, record.model_dump_json(), ex=self.ttl_seconds)
                await pipe.execute()
                return True
            except (redis.WatchError, ValidationError):
                return False


# ── Service ─────────────────────────────────────────────────


class VerificationService:
    def __init__(
        self,
        store: CodeStore,
        dispatcher: CodeDispatcher,
        code_length: int = 6,
        ttl_seconds: int = 600,
        max_attempts: int = 5,
        verified_window_seconds: int = 1800,
        clock: Callable[[], datetime] = utcnow,
        code_factory: Callable[[], str] | None = None,
    ):
        self.store = store
        self.dispatcher = dispatcher
        self.code_length = code_length
        self.ttl_seconds = ttl_seconds
        self.max_attempts = max_attempts
        self.verified_window_seconds = verified_window_seconds
        self.clock = clock
        self.code_factory = code_factory or self.generate_code

    @classmethod
    def from_settings(
        cls, store: CodeStore, dispatcher: CodeDispatcher, settings: Settings
    ) -> "VerificationService":
        return cls(
            store,
            dispatcher,
            code_length=settings.verification_code_length,
            ttl_seconds=settings.verification_code_ttl_seconds,
            max_attempts=settings.verification_max_attempts,
            verified_window_seconds=settings.verification_verified_window_seconds,
        )

    def generate_code(self) -> str:
        return "".join(secrets.choice(string.digits) for _ in range(self.code_length))

    @staticmethod
    def _target(target: str, purpose: VerificationPurpose) -> str:
        try:
            return normalize_target(target, purpose)
        except ValueError as e:
            raise BusinessLogicError(str(e), error_code="INVALID_TARGET") from e

    async def issue_code(self, target: str, purpose: VerificationPurpose) -> VerificationCode:
        """Send a fresh code and make it the authoritative one for the pair.

        Raises DispatchError if delivery fails; nothing is stored then and the
        previous code (if any) stays valid.
        """
        target = self._target(target, purpose)
        now = self.clock()
        record = VerificationCode(
            **{purpose.channel: target},
            code=self.code_factory(),
            purpose=purpose,
            created_at=now,
            expires_at=now + timedelta(seconds=self.ttl_seconds),
        )

        await self.dispatcher.send(target, purpose, record.code, self.ttl_seconds)
        await self.store.put(record)

        logger.info(f"Issued {purpose.value} code to {mask_target(target)}")
        return record

    async def resend_code(self, target: str, purpose: VerificationPurpose) -> VerificationCode:
        return await self.issue_code(target, purpose)

    async def verify_code(
        self, target: str, purpose: VerificationPurpose, submitted: str
    ) -> VerificationResult:
        """Check a submitted code against the authoritative one.

        Enforces:
          - single use (consumed codes report NOT_FOUND)
          - expiry (EXPIRED, even with the right value)
          - max attempts (the code is dropped after too many mismatches)
        """
        target = self._target(target, purpose)
        now = self.clock()
        record = await self.store.get(purpose, target)

        if record is None or record.consumed or record.attempts >= self.max_attempts:
            return VerificationResult(ok=False, reason=RejectReason.NOT_FOUND)

        if record.is_expired(now):
            return VerificationResult(ok=False, reason=RejectReason.EXPIRED)

        if not secrets.compare_digest(record.code.encode(), submitted.strip().encode()):
            record.attempts += 1
            await self.store.save(record)
            logger.info(
                f"Code mismatch for {purpose.value} {mask_target(target)} "
                f"(attempt {record.attempts}/{self.max_attempts})"
            )
            return VerificationResult(ok=False, reason=RejectReason.MISMATCH)

        record.consumed = True
        record.consumed_at = now
        if not await self.store.save(record):
            # A new code was issued while we were checking this one
            return VerificationResult(ok=False, reason=RejectReason.MISMATCH)

        logger.info(f"Verified {purpose.value} for {mask_target(target)}")
        return VerificationResult(ok=True, code=record)

    async def is_verified(self, target: str, purpose: VerificationPurpose) -> bool:
        """True if the pair's latest code was consumed within the verified window."""
        target = self._target(target, purpose)
        record = await self.store.get(purpose, target)
        if record is None or not record.consumed or record.consumed_at is None:
            return False
        window = timedelta(seconds=self.verified_window_seconds)
        return self.clock() - record.consumed_at <= window
