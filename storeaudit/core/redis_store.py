"""
Redis хранилище аудитов и квот (для нескольких процессов).

Используем:
- Lua-скрипты для conditional create / conditional update / upsert с
  переходом суток: вся проверка и запись выполняются атомарно на сервере
- JSON строки для записей аудитов и проблем
- ZSET по created_at для истории аккаунта
- время в скриптах хранится целыми микросекундами, без float

Ключи (prefix по умолчанию "storeaudit"):
    {p}:audit:{id}                      JSON аудита
    {p}:audit:{id}:issues               LIST id проблем
    {p}:issue:{id}                      JSON проблемы
    {p}:account:{acc}:audits            ZSET id аудитов
    {p}:account:{acc}:active            id активного аудита
    {p}:account:{acc}:last_terminal     HASH id, completed_at
    {p}:audits:active                   SET id активных аудитов
    {p}:usage:{acc}                     HASH day + счётчики
    {p}:usage:accounts                  SET аккаунтов с записями квот
"""

import json
import logging
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

import redis.asyncio as redis

from .models import Audit, Issue, UsageRecord
from .types import AuditStatus, MeteredAction

logger = logging.getLogger(__name__)

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
_MICROSECOND = timedelta(microseconds=1)


def to_micros(moment: datetime) -> int:
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return (moment - _EPOCH) // _MICROSECOND


def timedelta_to_micros(value: timedelta) -> int:
    return value // _MICROSECOND


# ═══════════════════════════════════════════════════════════
# LUA
# ═══════════════════════════════════════════════════════════

# KEYS: active, last_terminal, audit, account_audits, active_set
# ARGV: audit_id, audit_json, created_at_us, cooldown_us
_CREATE_PENDING_IF_IDLE = """
if redis.call('EXISTS', KEYS[1]) == 1 then
  return 0
end
local last = redis.call('HGET', KEYS[2], 'completed_at')
if last and tonumber(ARGV[3]) < tonumber(last) + tonumber(ARGV[4]) then
  return 0
end
redis.call('SET', KEYS[1], ARGV[1])
redis.call('SET', KEYS[3], ARGV[2])
redis.call('ZADD', KEYS[4], ARGV[3], ARGV[1])
redis.call('SADD', KEYS[5], ARGV[1])
return 1
"""

# KEYS: audit, active, last_terminal, active_set
# ARGV: expected_status, audit_json, new_status, audit_id, completed_at_us
_TRANSITION = """
local current = redis.call('GET', KEYS[1])
if not current then
  return 0
end
if cjson.decode(current)['status'] ~= ARGV[1] then
  return 0
end
redis.call('SET', KEYS[1], ARGV[2])
if ARGV[3] == 'completed' or ARGV[3] == 'failed' then
  if redis.call('GET', KEYS[2]) == ARGV[4] then
    redis.call('DEL', KEYS[2])
  end
  redis.call('SREM', KEYS[4], ARGV[4])
  local last = redis.call('HGET', KEYS[3], 'completed_at')
  if (not last) or tonumber(ARGV[5]) >= tonumber(last) then
    redis.call('HSET', KEYS[3], 'id', ARGV[4], 'completed_at', ARGV[5])
  end
end
return 1
"""

# KEYS: issue
# ARGV: fixed ("1" | "0")
# cjson кодирует пустой details как [], Issue.from_dict это переносит
_SET_ISSUE_FIXED = """
local current = redis.call('GET', KEYS[1])
if not current then
  return false
end
local issue = cjson.decode(current)
issue['fixed'] = ARGV[1] == '1'
local updated = cjson.encode(issue)
redis.call('SET', KEYS[1], updated)
return updated
"""

# KEYS: usage, accounts
# ARGV: account_id, day, field, amount
_INCREMENT_USAGE = """
if redis.call('HGET', KEYS[1], 'day') ~= ARGV[2] then
  redis.call('DEL', KEYS[1])
  redis.call('HSET', KEYS[1], 'day', ARGV[2])
end
redis.call('HINCRBY', KEYS[1], ARGV[3], tonumber(ARGV[4]))
redis.call('SADD', KEYS[2], ARGV[1])
return redis.call('HGETALL', KEYS[1])
"""

# KEYS: usage
# ARGV: day
_RESET_IF_STALE = """
local day = redis.call('HGET', KEYS[1], 'day')
if day and day < ARGV[1] then
  redis.call('DEL', KEYS[1])
  redis.call('HSET', KEYS[1], 'day', ARGV[1])
  return 1
end
return 0
"""


async def connect_redis(redis_url: str) -> redis.Redis:
    """Подключиться к Redis и проверить соединение."""
    client = redis.from_url(redis_url, decode_responses=True)
    await client.ping()
    logger.info(f"Redis connected: {redis_url}")
    return client


# ═══════════════════════════════════════════════════════════
# АУДИТЫ
# ═══════════════════════════════════════════════════════════

class RedisAuditRepository:
    """AuditRepository на Redis. Клиент должен быть создан с decode_responses=True."""

    def __init__(self, client: redis.Redis, prefix: str = "storeaudit"):
        self.client = client
        self.prefix = prefix
        self._create_script = client.register_script(_CREATE_PENDING_IF_IDLE)
        self._transition_script = client.register_script(_TRANSITION)
        self._set_fixed_script = client.register_script(_SET_ISSUE_FIXED)

    # ==================== Keys ====================

    def _audit_key(self, audit_id: str) -> str:
        return f"{self.prefix}:audit:{audit_id}"

    def _audit_issues_key(self, audit_id: str) -> str:
        return f"{self.prefix}:audit:{audit_id}:issues"

    def _issue_key(self, issue_id: str) -> str:
        return f"{self.prefix}:issue:{issue_id}"

    def _account_key(self, account_id: str, suffix: str) -> str:
        return f"{self.prefix}:account:{account_id}:{suffix}"

    @property
    def _active_set(self) -> str:
        return f"{self.prefix}:audits:active"

    # ==================== Helpers ====================

    async def _load_many(self, audit_ids: List[str]) -> List[Audit]:
        if not audit_ids:
            return []
        raw = await self.client.mget([self._audit_key(i) for i in audit_ids])
        return [Audit.from_dict(json.loads(item)) for item in raw if item]

    # ==================== Audits ====================

    async def create_pending_if_idle(self, audit: Audit, cooldown: timedelta) -> Optional[Audit]:
        created = await self._create_script(
            keys=[
                self._account_key(audit.account_id, "active"),
                self._account_key(audit.account_id, "last_terminal"),
                self._audit_key(audit.id),
                self._account_key(audit.account_id, "audits"),
                self._active_set,
            ],
            args=[
                audit.id,
                json.dumps(audit.to_dict()),
                to_micros(audit.created_at),
                timedelta_to_micros(cooldown),
            ],
        )
        return audit if int(created) == 1 else None

    async def get(self, audit_id: str) -> Optional[Audit]:
        raw = await self.client.get(self._audit_key(audit_id))
        return Audit.from_dict(json.loads(raw)) if raw else None

    async def get_active(self, account_id: str) -> Optional[Audit]:
        audit_id = await self.client.get(self._account_key(account_id, "active"))
        return await self.get(audit_id) if audit_id else None

    async def get_last_terminal(self, account_id: str) -> Optional[Audit]:
        audit_id = await self.client.hget(self._account_key(account_id, "last_terminal"), "id")
        return await self.get(audit_id) if audit_id else None

    async def get_latest_completed(self, account_id: str) -> Optional[Audit]:
        ids = await self.client.zrevrange(self._account_key(account_id, "audits"), 0, -1)
        for audit in await self._load_many(ids):
            if audit.status == AuditStatus.COMPLETED:
                return audit
        return None

    async def list_for_account(self, account_id: str, limit: int = 50) -> List[Audit]:
        ids = await self.client.zrevrange(self._account_key(account_id, "audits"), 0, limit - 1)
        return await self._load_many(ids)

    async def list_active(self) -> List[Audit]:
        ids = await self.client.smembers(self._active_set)
        return await self._load_many(sorted(ids))

    async def transition(self, audit: Audit, expected: AuditStatus) -> bool:
        completed_at = to_micros(audit.completed_at) if audit.completed_at else 0
        written = await self._transition_script(
            keys=[
                self._audit_key(audit.id),
                self._account_key(audit.account_id, "active"),
                self._account_key(audit.account_id, "last_terminal"),
                self._active_set,
            ],
            args=[
                expected.value,
                json.dumps(audit.to_dict()),
                audit.status.value,
                audit.id,
                completed_at,
            ],
        )
        return int(written) == 1

    # ==================== Issues ====================

    async def save_issues(self, audit_id: str, issues: List[Issue]) -> None:
        if not issues:
            return
        async with self.client.pipeline(transaction=True) as pipe:
            for issue in issues:
                data = issue.to_dict()
                data["audit_id"] = audit_id
                pipe.set(self._issue_key(issue.id), json.dumps(data))
            pipe.rpush(self._audit_issues_key(audit_id), *[issue.id for issue in issues])
            await pipe.execute()

    async def list_issues(self, audit_id: str) -> List[Issue]:
        ids = await self.client.lrange(self._audit_issues_key(audit_id), 0, -1)
        if not ids:
            return []
        raw = await self.client.mget([self._issue_key(i) for i in ids])
        return [Issue.from_dict(json.loads(item)) for item in raw if item]

    async def set_issue_fixed(self, issue_id: str, fixed: bool) -> Optional[Issue]:
        raw = await self._set_fixed_script(keys=[self._issue_key(issue_id)], args=["1" if fixed else "0"])
        return Issue.from_dict(json.loads(raw)) if raw else None


# ═══════════════════════════════════════════════════════════
# КВОТЫ
# ═══════════════════════════════════════════════════════════

class RedisUsageStore:
    """UsageStore на Redis: один HASH на аккаунт."""

    def __init__(self, client: redis.Redis, prefix: str = "storeaudit"):
        self.client = client
        self.prefix = prefix
        self._increment_script = client.register_script(_INCREMENT_USAGE)
        self._reset_script = client.register_script(_RESET_IF_STALE)

    def _usage_key(self, account_id: str) -> str:
        return f"{self.prefix}:usage:{account_id}"

    @property
    def _accounts_key(self) -> str:
        return f"{self.prefix}:usage:accounts"

    @staticmethod
    def _record(account_id: str, data: Dict[str, str]) -> UsageRecord:
        return UsageRecord(
            account_id=account_id,
            day=data.get("day", ""),
            counters={action: int(data.get(action.value, 0)) for action in MeteredAction},
        )

    async def read(self, account_id: str) -> Optional[UsageRecord]:
        data = await self.client.hgetall(self._usage_key(account_id))
        return self._record(account_id, data) if data else None

    async def increment(self, account_id: str, day: str, action: MeteredAction, amount: int) -> UsageRecord:
        flat = await self._increment_script(
            keys=[self._usage_key(account_id), self._accounts_key],
            args=[account_id, day, action.value, amount],
        )
        data = dict(zip(flat[::2], flat[1::2]))
        return self._record(account_id, data)

    async def reset(self, account_id: str, day: str) -> None:
        key = self._usage_key(account_id)
        async with self.client.pipeline(transaction=True) as pipe:
            pipe.delete(key)
            pipe.hset(key, "day", day)
            pipe.sadd(self._accounts_key, account_id)
            await pipe.execute()

    async def reset_stale(self, day: str) -> int:
        count = 0
        for account_id in await self.client.smembers(self._accounts_key):
            count += int(await self._reset_script(keys=[self._usage_key(account_id)], args=[day]))
        return count

    async def list_records(self) -> List[UsageRecord]:
        records = []
        for account_id in sorted(await self.client.smembers(self._accounts_key)):
            record = await self.read(account_id)
            if record is not None:
                records.append(record)
        return records
