"""
Redis-backed OTP vault and send-rate limiter.

All state is keyed by (email, purpose) so a lockout on one purpose never
blocks the other. Keys share a hash tag per (purpose, email) so the Lua
scripts touching several of them stay valid on a Redis cluster:

    otp:{<purpose>:<email>}:code       current OTP (TTL = OTP lifetime)
    otp:{<purpose>:<email>}:fails      failed verification count
    otp:{<purpose>:<email>}:lock       present while verification/sending is locked
    otp:{<purpose>:<email>}:sends      sends in the current window
    otp:{<purpose>:<email>}:cooldown   present while a resend is not allowed
    otp:{<purpose>:<email>}:verified   reset-verified flag (password-reset only)
    otp:{<purpose>:<email>}:pending    staged registration (email-verification only)

Every key carries a TTL; nothing can pin an account forever.
"""

import enum
import json
import logging
from dataclasses import dataclass

import redis.asyncio as aioredis

from storefront.config import Settings, settings
from storefront.utils.exceptions import (
    OTPCooldownException, OTPLockedException, OTPSendLimitException,
)
from storefront.utils.security import generate_otp, otp_matches

logger = logging.getLogger(__name__)


class OTPPurpose(str, enum.Enum):
    EMAIL_VERIFICATION = "email-verification"
    PASSWORD_RESET     = "password-reset"


class OTPStatus(str, enum.Enum):
    MATCHED  = "MATCHED"
    MISMATCH = "MISMATCH"
    EXPIRED  = "EXPIRED"
    LOCKED   = "LOCKED"


@dataclass(frozen=True)
class OTPVerification:
    status: OTPStatus
    remaining_attempts: int | None = None
    retry_after: int | None = None


@dataclass(frozen=True)
class OTPPolicy:
    """Thresholds for one purpose. All durations in seconds."""
    otp_ttl: int
    max_failed_attempts: int
    lock_seconds: int
    cooldown_seconds: int
    send_window_seconds: int
    max_sends: int
    lock_on_send_cap: bool = False
    send_cap_lock_seconds: int = 0

    @classmethod
    def for_purpose(cls, purpose: OTPPurpose, cfg: Settings = settings) -> "OTPPolicy":
        otp_ttl = cfg.OTP_EXPIRE_MINUTES * 60
        common = dict(
            max_failed_attempts=cfg.OTP_MAX_FAILED_ATTEMPTS,
            lock_seconds=cfg.OTP_LOCK_MINUTES * 60,
            cooldown_seconds=cfg.OTP_RESEND_COOLDOWN_SECONDS,
            send_window_seconds=cfg.OTP_SEND_WINDOW_MINUTES * 60,
        )
        if purpose is OTPPurpose.EMAIL_VERIFICATION:
            # An OTP never outlives the registration it confirms
            return cls(
                otp_ttl=min(otp_ttl, cfg.PENDING_REGISTRATION_EXPIRE_MINUTES * 60),
                max_sends=cfg.OTP_VERIFICATION_MAX_SENDS,
                **common,
            )
        return cls(
            otp_ttl=otp_ttl,
            max_sends=cfg.OTP_RESET_MAX_SENDS,
            lock_on_send_cap=True,
            send_cap_lock_seconds=cfg.OTP_RESET_CAP_LOCK_MINUTES * 60,
            **common,
        )


class OTPVault:

    # KEYS: fails, lock, code   ARGV: max_failures, lock_seconds
    # Returns {fails, locked}; {-1, 1} when a lock already exists.
    _RECORD_FAILURE_SCRIPT = """
if redis.call('EXISTS', KEYS[2]) == 1 then
  return {-1, 1}
end
local fails = redis.call('INCR', KEYS[1])
if fails == 1 then
  redis.call('EXPIRE', KEYS[1], ARGV[2])
end
if fails >= tonumber(ARGV[1]) then
  redis.call('SET', KEYS[2], '1', 'EX', ARGV[2])
  redis.call('DEL', KEYS[1], KEYS[3])
  return {fails, 1}
end
return {fails, 0}
"""

    # KEYS: code, fails, lock   ARGV: the code value the caller matched
    # Compare-and-delete: 1 consumed, 0 gone/replaced, -1 locked.
    _CONSUME_SCRIPT = """
if redis.call('EXISTS', KEYS[3]) == 1 then
  return -1
end
if redis.call('GET', KEYS[1]) ~= ARGV[1] then
  return 0
end
redis.call('DEL', KEYS[1], KEYS[2])
return 1
"""

    # KEYS: lock, cooldown, sends
    # ARGV: cooldown_s, max_sends, window_s, lock_on_cap, cap_lock_s
    # Returns {status, seconds}: 0 allowed, 1 locked, 2 cooldown, 3 cap reached.
    _SEND_RATE_SCRIPT = """
local lock_ttl = redis.call('TTL', KEYS[1])
if lock_ttl ~= -2 then
  return {1, math.max(lock_ttl, 1)}
end
local cooldown_ttl = redis.call('TTL', KEYS[2])
if cooldown_ttl ~= -2 then
  return {2, math.max(cooldown_ttl, 1)}
end
local sends = tonumber(redis.call('GET', KEYS[3]) or '0')
if sends >= tonumber(ARGV[2]) then
  if ARGV[4] == '1' then
    redis.call('SET', KEYS[1], '1', 'EX', ARGV[5])
    return {3, tonumber(ARGV[5])}
  end
  local window_ttl = redis.call('TTL', KEYS[3])
  return {3, math.max(window_ttl, 1)}
end
redis.call('INCR', KEYS[3])
if sends == 0 then
  redis.call('EXPIRE', KEYS[3], ARGV[3])
end
if tonumber(ARGV[1]) > 0 then
  redis.call('SET', KEYS[2], '1', 'EX', ARGV[1])
end
return {0, 0}
"""

    _FIELDS = ("code", "fails", "lock", "sends", "cooldown", "verified")

    def __init__(
        self,
        redis: aioredis.Redis,
        policies: dict[OTPPurpose, OTPPolicy] | None = None,
        cfg: Settings = settings,
    ):
        self.redis = redis
        self.policies = policies or {p: OTPPolicy.for_purpose(p, cfg) for p in OTPPurpose}
        self.pending_ttl = cfg.PENDING_REGISTRATION_EXPIRE_MINUTES * 60
        self.reset_verified_ttl = cfg.RESET_VERIFIED_EXPIRE_MINUTES * 60
        self._record_failure = redis.register_script(self._RECORD_FAILURE_SCRIPT)
        self._consume = redis.register_script(self._CONSUME_SCRIPT)
        self._send_rate = redis.register_script(self._SEND_RATE_SCRIPT)

    @staticmethod
    def _key(email: str, purpose: OTPPurpose, field: str) -> str:
        return f"otp:{{{purpose.value}:{email.strip().lower()}}}:{field}"

    # ─── Pending Registration ─────────────────────────────────────────────────
    async def set_pending(self, email: str, payload: dict, ttl: int | None = None) -> None:
        key = self._key(email, OTPPurpose.EMAIL_VERIFICATION, "pending")
        await self.redis.set(key, json.dumps(payload), ex=ttl or self.pending_ttl)

    async def get_pending(self, email: str) -> dict | None:
        raw = await self.redis.get(self._key(email, OTPPurpose.EMAIL_VERIFICATION, "pending"))
        return json.loads(raw) if raw else None

    async def clear_pending(self, email: str) -> None:
        await self.redis.delete(self._key(email, OTPPurpose.EMAIL_VERIFICATION, "pending"))

    # ─── Issue / Verify ───────────────────────────────────────────────────────
    async def issue_otp(self, email: str, purpose: OTPPurpose) -> str:
        """Generate a fresh code, replacing any active one for this email+purpose."""
        otp = generate_otp()
        policy = self.policies[purpose]
        await self.redis.set(self._key(email, purpose, "code"), otp, ex=policy.otp_ttl)
        return otp

    async def verify(self, email: str, purpose: OTPPurpose, candidate: str) -> OTPVerification:
        policy = self.policies[purpose]
        code_key = self._key(email, purpose, "code")
        fails_key = self._key(email, purpose, "fails")
        lock_key = self._key(email, purpose, "lock")

        lock_ttl = await self.redis.ttl(lock_key)
        if lock_ttl != -2:
            return OTPVerification(OTPStatus.LOCKED, retry_after=max(lock_ttl, 1))

        stored = await self.redis.get(code_key)
        if stored is None:
            return OTPVerification(OTPStatus.EXPIRED)

        if otp_matches(candidate, stored):
            consumed = await self._consume(keys=[code_key, fails_key, lock_key], args=[stored])
            consumed = int(consumed)
            if consumed == 1:
                return OTPVerification(OTPStatus.MATCHED)
            if consumed == -1:
                return OTPVerification(OTPStatus.LOCKED, retry_after=await self.lock_remaining(email, purpose))
            return OTPVerification(OTPStatus.EXPIRED)

        fails, locked = await self._record_failure(
            keys=[fails_key, lock_key, code_key],
            args=[policy.max_failed_attempts, policy.lock_seconds],
        )
        fails, locked = int(fails), int(locked)
        if fails == -1:
            return OTPVerification(OTPStatus.LOCKED, retry_after=await self.lock_remaining(email, purpose))
        if locked:
            logger.warning(f"OTP lockout for {email} ({purpose.value}) after {fails} failed attempts")
            return OTPVerification(OTPStatus.LOCKED, retry_after=policy.lock_seconds)
        return OTPVerification(
            OTPStatus.MISMATCH,
            remaining_attempts=policy.max_failed_attempts - fails,
        )

    # ─── Send Rate ────────────────────────────────────────────────────────────
    async def check_and_bump_send_rate(self, email: str, purpose: OTPPurpose) -> None:
        """
        Gate one outgoing OTP. Raises when locked, inside the resend cooldown, or
        when the send ceiling for the current window is used up. On success the
        send counter is bumped and a new cooldown starts, in one atomic step.
        """
        policy = self.policies[purpose]
        status, seconds = await self._send_rate(
            keys=[
                self._key(email, purpose, "lock"),
                self._key(email, purpose, "cooldown"),
                self._key(email, purpose, "sends"),
            ],
            args=[
                policy.cooldown_seconds,
                policy.max_sends,
                policy.send_window_seconds,
                "1" if policy.lock_on_send_cap else "0",
                policy.send_cap_lock_seconds,
            ],
        )
        status, seconds = int(status), int(seconds)
        if status == 1:
            raise OTPLockedException(seconds)
        if status == 2:
            raise OTPCooldownException(seconds)
        if status == 3:
            logger.warning(f"OTP send ceiling reached for {email} ({purpose.value})")
            raise OTPSendLimitException(seconds)

    async def cooldown_remaining(self, email: str, purpose: OTPPurpose) -> int:
        """Seconds until a resend is allowed; read from the key the send gate checks."""
        ttl = await self.redis.ttl(self._key(email, purpose, "cooldown"))
        return max(ttl, 1) if ttl != -2 else 0

    async def lock_remaining(self, email: str, purpose: OTPPurpose) -> int:
        ttl = await self.redis.ttl(self._key(email, purpose, "lock"))
        return max(ttl, 1) if ttl != -2 else 0

    # ─── Password Reset Flag ──────────────────────────────────────────────────
    async def mark_reset_verified(self, email: str) -> None:
        key = self._key(email, OTPPurpose.PASSWORD_RESET, "verified")
        await self.redis.set(key, "1", ex=self.reset_verified_ttl)

    async def is_reset_verified(self, email: str) -> bool:
        return bool(await self.redis.exists(self._key(email, OTPPurpose.PASSWORD_RESET, "verified")))

    async def consume_reset_verified(self, email: str) -> bool:
        """Atomically read and drop the flag so one verification allows one reset."""
        return await self.redis.getdel(self._key(email, OTPPurpose.PASSWORD_RESET, "verified")) is not None

    # ─── Cleanup ──────────────────────────────────────────────────────────────
    async def cleanup(self, email: str, purpose: OTPPurpose) -> None:
        """Drop every counter and flag for email+purpose after a terminal outcome."""
        await self.redis.delete(*(self._key(email, purpose, f) for f in self._FIELDS))
