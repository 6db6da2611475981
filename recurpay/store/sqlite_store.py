"""SQLite-backed record store."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Iterable, Sequence
from contextlib import asynccontextmanager
from datetime import date, datetime, time
from enum import Enum
from pathlib import Path
from typing import Any, Optional, Union

import aiosqlite

from ..core.exceptions import TransientStoreError
from ..core.timezone_utils import now_utc
from ..domain.models import (
    REMINDABLE_STATUSES,
    LedgerTransaction,
    Occurrence,
    OccurrenceStatus,
    PushSubscription,
    RecurrenceRule,
    UserNotificationSettings,
)

logger = logging.getLogger(__name__)

_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS recurrence_rules (
        id TEXT PRIMARY KEY,
        owner_id TEXT NOT NULL,
        amount INTEGER NOT NULL CHECK (amount > 0),
        category_id TEXT,
        payee TEXT,
        payment_method TEXT NOT NULL,
        notes TEXT,
        frequency TEXT NOT NULL,
        interval INTEGER NOT NULL DEFAULT 1 CHECK (interval >= 1),
        start_date TEXT NOT NULL,
        end_date TEXT,
        is_active INTEGER NOT NULL DEFAULT 1,
        auto_create INTEGER NOT NULL DEFAULT 0,
        reminder_enabled INTEGER NOT NULL DEFAULT 0,
        reminder_time TEXT,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_rules_owner
    ON recurrence_rules(owner_id, created_at)
    """,
    # No UNIQUE(rule_id, occurs_on): a snoozed occurrence may land on a date
    # the rule also generates.
    """
    CREATE TABLE IF NOT EXISTS occurrences (
        id TEXT PRIMARY KEY,
        rule_id TEXT NOT NULL REFERENCES recurrence_rules(id),
        owner_id TEXT NOT NULL,
        occurs_on TEXT NOT NULL,
        status TEXT NOT NULL DEFAULT 'upcoming',
        snoozed_until TEXT,
        transaction_id TEXT,
        reminder_sent_at TEXT,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_occurrences_rule_date
    ON occurrences(rule_id, occurs_on)
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_occurrences_owner_date
    ON occurrences(owner_id, occurs_on)
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_occurrences_reminder
    ON occurrences(status, occurs_on) WHERE reminder_sent_at IS NULL
    """,
    """
    CREATE TABLE IF NOT EXISTS ledger_transactions (
        id TEXT PRIMARY KEY,
        owner_id TEXT NOT NULL,
        amount INTEGER NOT NULL CHECK (amount > 0),
        occurred_at TEXT NOT NULL,
        category_id TEXT,
        payee TEXT,
        payment_method TEXT,
        notes TEXT,
        occurrence_id TEXT,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_transactions_occurrence
    ON ledger_transactions(occurrence_id)
    """,
    """
    CREATE TABLE IF NOT EXISTS push_subscriptions (
        id TEXT PRIMARY KEY,
        owner_id TEXT NOT NULL,
        endpoint TEXT NOT NULL,
        p256dh TEXT NOT NULL,
        auth TEXT NOT NULL,
        expiration_time TEXT,
        is_active INTEGER NOT NULL DEFAULT 1
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_subscriptions_owner
    ON push_subscriptions(owner_id, is_active)
    """,
    """
    CREATE TABLE IF NOT EXISTS user_settings (
        owner_id TEXT PRIMARY KEY,
        notifications_enabled INTEGER NOT NULL DEFAULT 1,
        time_zone TEXT NOT NULL DEFAULT 'UTC'
    )
    """,
)

_RULE_COLUMNS = tuple(RecurrenceRule.model_fields)
_OCCURRENCE_COLUMNS = tuple(Occurrence.model_fields)
_TRANSACTION_COLUMNS = tuple(LedgerTransaction.model_fields)
_SUBSCRIPTION_COLUMNS = tuple(PushSubscription.model_fields)
_SETTINGS_COLUMNS = tuple(UserNotificationSettings.model_fields)


def _to_db(value: Any) -> Any:
    """Convert a model value into an SQLite parameter."""
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, (datetime, date, time)):
        return value.isoformat()
    return value


def _row_values(model: Any, columns: Sequence[str]) -> tuple[Any, ...]:
    return tuple(_to_db(getattr(model, column)) for column in columns)


def _placeholders(count: int) -> str:
    return ", ".join("?" for _ in range(count))


def _insert_sql(table: str, columns: Sequence[str], upsert_key: Optional[str] = None) -> str:
    sql = f"INSERT INTO {table} ({', '.join(columns)}) VALUES ({_placeholders(len(columns))})"  # nosec: B608 - identifiers are module constants
    if upsert_key:
        assignments = ", ".join(f"{c} = excluded.{c}" for c in columns if c != upsert_key)
        sql += f" ON CONFLICT({upsert_key}) DO UPDATE SET {assignments}"
    return sql


def _set_clause(changes: dict[str, Any], allowed: Sequence[str]) -> tuple[str, list[Any]]:
    unknown = set(changes) - set(allowed)
    if unknown:
        raise ValueError(f"Unknown columns in update: {sorted(unknown)}")
    columns = list(changes)
    return ", ".join(f"{c} = ?" for c in columns), [_to_db(changes[c]) for c in columns]


class SQLiteRecordStore:
    """RecordStore backed by a single SQLite file.

    The schema is created lazily on first use. Each operation opens its own
    connection; aiosqlite errors are re-raised as TransientStoreError.
    """

    def __init__(self, database_path: Union[Path, str]):
        """Initialize the store.

        Args:
            database_path: Path to SQLite database file
        """
        self.database_path = Path(database_path)
        self.database_path.parent.mkdir(parents=True, exist_ok=True)
        self._initialized = False
        self._initialization_lock: Optional[asyncio.Lock] = None

        logger.info("Record store initialized (lazy): %s", self.database_path)

    async def initialize(self) -> None:
        """Create tables and indexes if needed."""
        if self._initialized:
            return

        if self._initialization_lock is None:
            self._initialization_lock = asyncio.Lock()

        async with self._initialization_lock:
            if self._initialized:
                return
            try:
                async with aiosqlite.connect(str(self.database_path)) as db:
                    await db.execute("PRAGMA journal_mode=WAL")
                    await db.execute("PRAGMA synchronous=NORMAL")
                    for statement in _SCHEMA:
                        await db.execute(statement)
                    await db.commit()
            except aiosqlite.Error as exc:
                logger.exception("Failed to initialize database %s", self.database_path)
                raise TransientStoreError(f"Database initialization failed: {exc}") from exc
            self._initialized = True
            logger.debug("Database schema ready at %s", self.database_path)

    @asynccontextmanager
    async def _connect(self) -> AsyncIterator[aiosqlite.Connection]:
        await self.initialize()
        try:
            async with aiosqlite.connect(str(self.database_path)) as db:
                db.row_factory = aiosqlite.Row
                await db.execute("PRAGMA foreign_keys=ON")
                yield db
        except aiosqlite.Error as exc:
            logger.warning("Database operation failed: %s", exc)
            raise TransientStoreError(f"Database operation failed: {exc}") from exc

    async def _fetch(self, sql: str, params: Sequence[Any] = ()) -> list[dict[str, Any]]:
        async with self._connect() as db:
            cursor = await db.execute(sql, tuple(params))
            rows = await cursor.fetchall()
        return [dict(row) for row in rows]

    async def _execute(self, sql: str, params: Sequence[Any] = ()) -> int:
        async with self._connect() as db:
            cursor = await db.execute(sql, tuple(params))
            await db.commit()
            return cursor.rowcount

    # Rules

    async def insert_rule(self, rule: RecurrenceRule) -> RecurrenceRule:
        await self._execute(_insert_sql("recurrence_rules", _RULE_COLUMNS), _row_values(rule, _RULE_COLUMNS))
        return rule

    async def update_rule(
        self, rule_id: str, owner_id: str, changes: dict[str, Any]
    ) -> Optional[RecurrenceRule]:
        clause, params = _set_clause({**changes, "updated_at": now_utc()}, _RULE_COLUMNS)
        updated = await self._execute(
            f"UPDATE recurrence_rules SET {clause} WHERE id = ? AND owner_id = ?",  # nosec: B608
            [*params, rule_id, owner_id],
        )
        if not updated:
            return None
        return await self.get_rule(rule_id, owner_id)

    async def get_rule(self, rule_id: str, owner_id: str) -> Optional[RecurrenceRule]:
        rows = await self._fetch(
            "SELECT * FROM recurrence_rules WHERE id = ? AND owner_id = ?", (rule_id, owner_id)
        )
        return RecurrenceRule.model_validate(rows[0]) if rows else None

    async def list_rules(self, owner_id: str, active_only: bool = False) -> list[RecurrenceRule]:
        sql = "SELECT * FROM recurrence_rules WHERE owner_id = ?"
        if active_only:
            sql += " AND is_active = 1"
        sql += " ORDER BY created_at DESC"
        return [RecurrenceRule.model_validate(row) for row in await self._fetch(sql, (owner_id,))]

    async def get_rules_by_ids(self, rule_ids: Iterable[str]) -> dict[str, RecurrenceRule]:
        ids = sorted(set(rule_ids))
        if not ids:
            return {}
        rows = await self._fetch(
            f"SELECT * FROM recurrence_rules WHERE id IN ({_placeholders(len(ids))})", ids  # nosec: B608
        )
        return {row["id"]: RecurrenceRule.model_validate(row) for row in rows}

    # Occurrences

    async def insert_occurrences(self, occurrences: Sequence[Occurrence]) -> int:
        if not occurrences:
            return 0
        async with self._connect() as db:
            await db.executemany(
                _insert_sql("occurrences", _OCCURRENCE_COLUMNS),
                [_row_values(o, _OCCURRENCE_COLUMNS) for o in occurrences],
            )
            await db.commit()
        return len(occurrences)

    async def list_rule_occurrences(
        self, rule_id: str, date_from: date, date_to: Optional[date] = None
    ) -> list[Occurrence]:
        sql = "SELECT * FROM occurrences WHERE rule_id = ? AND occurs_on >= ?"
        params: list[Any] = [rule_id, date_from.isoformat()]
        if date_to is not None:
            sql += " AND occurs_on <= ?"
            params.append(date_to.isoformat())
        sql += " ORDER BY occurs_on"
        return [Occurrence.model_validate(row) for row in await self._fetch(sql, params)]

    async def get_occurrence(self, occurrence_id: str, owner_id: str) -> Optional[Occurrence]:
        rows = await self._fetch(
            "SELECT * FROM occurrences WHERE id = ? AND owner_id = ?", (occurrence_id, owner_id)
        )
        return Occurrence.model_validate(rows[0]) if rows else None

    async def update_occurrence(
        self, occurrence_id: str, changes: dict[str, Any]
    ) -> Optional[Occurrence]:
        clause, params = _set_clause({**changes, "updated_at": now_utc()}, _OCCURRENCE_COLUMNS)
        async with self._connect() as db:
            await db.execute(
                f"UPDATE occurrences SET {clause} WHERE id = ?", [*params, occurrence_id]  # nosec: B608
            )
            await db.commit()
            cursor = await db.execute("SELECT * FROM occurrences WHERE id = ?", (occurrence_id,))
            row = await cursor.fetchone()
        return Occurrence.model_validate(dict(row)) if row else None

    async def set_occurrences_status(
        self, occurrence_ids: Sequence[str], status: OccurrenceStatus
    ) -> int:
        ids = list(dict.fromkeys(occurrence_ids))
        if not ids:
            return 0
        return await self._execute(
            f"UPDATE occurrences SET status = ?, updated_at = ? WHERE id IN ({_placeholders(len(ids))})",  # nosec: B608
            [status.value, now_utc().isoformat(), *ids],
        )

    async def list_owner_occurrences(
        self,
        owner_id: str,
        date_from: date,
        date_to: date,
        statuses: Optional[Iterable[OccurrenceStatus]] = None,
    ) -> list[Occurrence]:
        sql = "SELECT * FROM occurrences WHERE owner_id = ? AND occurs_on BETWEEN ? AND ?"
        params: list[Any] = [owner_id, date_from.isoformat(), date_to.isoformat()]
        if statuses is not None:
            wanted = sorted({s.value for s in statuses})
            if not wanted:
                return []
            sql += f" AND status IN ({_placeholders(len(wanted))})"
            params.extend(wanted)
        sql += " ORDER BY occurs_on, created_at"
        return [Occurrence.model_validate(row) for row in await self._fetch(sql, params)]

    async def list_reminder_candidates(
        self, date_from: date, date_to: date, limit: int, offset: int = 0
    ) -> list[Occurrence]:
        statuses = sorted(s.value for s in REMINDABLE_STATUSES)
        rows = await self._fetch(
            f"""
            SELECT o.* FROM occurrences o
            JOIN recurrence_rules r ON r.id = o.rule_id
            LEFT JOIN user_settings s ON s.owner_id = o.owner_id
            WHERE o.status IN ({_placeholders(len(statuses))})
              AND o.reminder_sent_at IS NULL
              AND o.occurs_on BETWEEN ? AND ?
              AND (r.reminder_enabled = 1 OR COALESCE(s.notifications_enabled, 1) = 1)
              AND EXISTS (
                  SELECT 1 FROM push_subscriptions p
                  WHERE p.owner_id = o.owner_id AND p.is_active = 1
              )
            ORDER BY o.occurs_on, o.id
            LIMIT ? OFFSET ?
            """,  # nosec: B608
            [*statuses, date_from.isoformat(), date_to.isoformat(), limit, offset],
        )
        return [Occurrence.model_validate(row) for row in rows]

    async def mark_reminders_sent(self, occurrence_ids: Sequence[str], sent_at: datetime) -> int:
        ids = list(dict.fromkeys(occurrence_ids))
        if not ids:
            return 0
        return await self._execute(
            f"UPDATE occurrences SET reminder_sent_at = ? WHERE id IN ({_placeholders(len(ids))})",  # nosec: B608
            [sent_at.isoformat(), *ids],
        )

    # Ledger

    async def insert_transaction(self, transaction: LedgerTransaction) -> LedgerTransaction:
        await self._execute(
            _insert_sql("ledger_transactions", _TRANSACTION_COLUMNS),
            _row_values(transaction, _TRANSACTION_COLUMNS),
        )
        return transaction

    async def update_transaction(
        self, transaction_id: str, owner_id: str, changes: dict[str, Any]
    ) -> Optional[LedgerTransaction]:
        clause, params = _set_clause({**changes, "updated_at": now_utc()}, _TRANSACTION_COLUMNS)
        updated = await self._execute(
            f"UPDATE ledger_transactions SET {clause} WHERE id = ? AND owner_id = ?",  # nosec: B608
            [*params, transaction_id, owner_id],
        )
        if not updated:
            return None
        return await self.get_transaction(transaction_id, owner_id)

    async def get_transaction(
        self, transaction_id: str, owner_id: str
    ) -> Optional[LedgerTransaction]:
        rows = await self._fetch(
            "SELECT * FROM ledger_transactions WHERE id = ? AND owner_id = ?",
            (transaction_id, owner_id),
        )
        return LedgerTransaction.model_validate(rows[0]) if rows else None

    async def find_transaction_for_occurrence(
        self, occurrence_id: str, owner_id: str
    ) -> Optional[LedgerTransaction]:
        rows = await self._fetch(
            "SELECT * FROM ledger_transactions WHERE occurrence_id = ? AND owner_id = ? "
            "ORDER BY created_at LIMIT 1",
            (occurrence_id, owner_id),
        )
        return LedgerTransaction.model_validate(rows[0]) if rows else None

    # Push subscriptions and settings

    async def save_subscription(self, subscription: PushSubscription) -> PushSubscription:
        await self._execute(
            _insert_sql("push_subscriptions", _SUBSCRIPTION_COLUMNS, upsert_key="id"),
            _row_values(subscription, _SUBSCRIPTION_COLUMNS),
        )
        return subscription

    async def list_active_subscriptions(self, owner_ids: Iterable[str]) -> list[PushSubscription]:
        owners = sorted(set(owner_ids))
        if not owners:
            return []
        rows = await self._fetch(
            f"SELECT * FROM push_subscriptions WHERE is_active = 1 AND owner_id IN ({_placeholders(len(owners))})",  # nosec: B608
            owners,
        )
        return [PushSubscription.model_validate(row) for row in rows]

    async def deactivate_subscriptions(self, subscription_ids: Sequence[str]) -> int:
        ids = list(dict.fromkeys(subscription_ids))
        if not ids:
            return 0
        return await self._execute(
            f"UPDATE push_subscriptions SET is_active = 0 WHERE id IN ({_placeholders(len(ids))})",  # nosec: B608
            ids,
        )

    async def save_notification_settings(
        self, settings: UserNotificationSettings
    ) -> UserNotificationSettings:
        await self._execute(
            _insert_sql("user_settings", _SETTINGS_COLUMNS, upsert_key="owner_id"),
            _row_values(settings, _SETTINGS_COLUMNS),
        )
        return settings

    async def get_notification_settings(
        self, owner_ids: Iterable[str]
    ) -> dict[str, UserNotificationSettings]:
        owners = sorted(set(owner_ids))
        if not owners:
            return {}
        rows = await self._fetch(
            f"SELECT * FROM user_settings WHERE owner_id IN ({_placeholders(len(owners))})",  # nosec: B608
            owners,
        )
        return {row["owner_id"]: UserNotificationSettings.model_validate(row) for row in rows}
