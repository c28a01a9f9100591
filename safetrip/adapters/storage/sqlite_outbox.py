"""
SQLite-based outbox for SafeTrip.

This module implements a SQLite-based outbox pattern
for durable notification queuing and delivery.
"""

import aiosqlite
import json
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional
from safetrip.core.errors import CollaboratorError
from safetrip.observability.logging_setup import get_logger

log = get_logger("safetrip.outbox")

# SQLite 스키마
SCHEMA = """
CREATE TABLE IF NOT EXISTS outbox (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    channel TEXT NOT NULL,
    recipients TEXT NOT NULL,
    payload TEXT NOT NULL,
    created_at REAL NOT NULL,
    next_attempt_at REAL NOT NULL,
    attempts INTEGER NOT NULL DEFAULT 0,
    last_error TEXT
);
CREATE INDEX IF NOT EXISTS idx_outbox_next ON outbox(next_attempt_at);
"""

@dataclass
class OutboxItem:
    """Outbox 항목"""
    id: int
    channel: str
    recipients: List[str]
    payload: Dict[str, Any]
    attempts: int
    last_error: Optional[str] = None

class SQLiteOutbox:
    """SQLite 기반 Outbox"""

    def __init__(self, path: str):
        """
        초기화합니다.

        Args:
            path: SQLite 데이터베이스 파일 경로
        """
        self.path = path
        log.info(f"SQLiteOutbox 초기화: {path}")

    async def init(self) -> None:
        """데이터베이스를 초기화합니다."""
        async with aiosqlite.connect(self.path) as db:
            await db.executescript(SCHEMA)
            await db.commit()
        log.info(f"SQLiteOutbox 스키마 초기화 완료: {self.path}")

    async def enqueue(self, channel: str, recipients: List[str], payload: Dict[str, Any]) -> int:
        """
        알림을 Outbox에 추가합니다.

        Args:
            channel: 발송 채널
            recipients: 수신자 목록
            payload: 메시지 본문

        Returns:
            생성된 항목의 ID

        Raises:
            CollaboratorError: 저장 실패
        """
        now = time.time()

        try:
            async with aiosqlite.connect(self.path) as db:
                cursor = await db.execute(
                    "INSERT INTO outbox (channel, recipients, payload, created_at, next_attempt_at) "
                    "VALUES (?, ?, ?, ?, ?)",
                    (channel, json.dumps(list(recipients)),
                     json.dumps(payload, ensure_ascii=False, default=str), now, now)
                )
                await db.commit()
                return cursor.lastrowid
        except aiosqlite.Error as e:
            raise CollaboratorError(f"outbox enqueue failed: {e}") from e

    async def peek_due(self, now: Optional[float] = None) -> Optional[OutboxItem]:
        """
        발송 시각이 된 가장 오래된 항목을 조회합니다 (삭제하지 않음).

        Args:
            now: 기준 시각 (Unix timestamp), None이면 현재 시각

        Returns:
            OutboxItem 또는 None
        """
        if now is None:
            now = time.time()

        async with aiosqlite.connect(self.path) as db:
            cursor = await db.execute(
                "SELECT id, channel, recipients, payload, attempts, last_error FROM outbox "
                "WHERE next_attempt_at <= ? ORDER BY next_attempt_at ASC, id ASC LIMIT 1",
                (now,)
            )
            row = await cursor.fetchone()

            if row:
                return OutboxItem(
                    id=row[0],
                    channel=row[1],
                    recipients=json.loads(row[2]),
                    payload=json.loads(row[3]),
                    attempts=row[4],
                    last_error=row[5]
                )
            return None

    async def mark_attempt(self, oid: int, delay_sec: float = 0.0, error: Optional[str] = None) -> None:
        """
        발송 시도 횟수를 증가시키고 다음 시도 시각을 미룹니다.

        Args:
            oid: Outbox 항목 ID
            delay_sec: 다음 시도까지의 지연 (초)
            error: 실패 사유
        """
        async with aiosqlite.connect(self.path) as db:
            await db.execute(
                "UPDATE outbox SET attempts = attempts + 1, next_attempt_at = ?, last_error = ? WHERE id = ?",
                (time.time() + delay_sec, error, oid)
            )
            await db.commit()

    async def delete(self, oid: int) -> None:
        """
        항목을 삭제합니다 (발송 성공 또는 폐기).

        Args:
            oid: 삭제할 Outbox 항목 ID
        """
        async with aiosqlite.connect(self.path) as db:
            await db.execute("DELETE FROM outbox WHERE id = ?", (oid,))
            await db.commit()

    async def get_count(self) -> int:
        """
        현재 저장된 항목 수를 반환합니다.

        Returns:
            항목 수
        """
        async with aiosqlite.connect(self.path) as db:
            cursor = await db.execute("SELECT COUNT(*) FROM outbox")
            result = await cursor.fetchone()
            return result[0] if result else 0
