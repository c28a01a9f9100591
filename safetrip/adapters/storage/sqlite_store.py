"""
SQLite-based record store for SafeTrip.

This module implements the record store port on top of aiosqlite.
Records are kept as JSON documents next to the indexed columns
used for filtering, range queries and optimistic versioning.
"""

from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncIterator, Iterable, List, Optional, Tuple

import aiosqlite

from safetrip.common.geo import bounding_box, distance_meters
from safetrip.core.errors import CollaboratorError, NotFoundError, StaleRecordError, ValidationError
from safetrip.core.models import AgentState, Alert, Incident, Position, Zone, utcnow
from safetrip.observability.logging_setup import get_logger

log = get_logger("safetrip.sqlite_store")

# SQLite 스키마
SCHEMA = """
CREATE TABLE IF NOT EXISTS zones (
    id TEXT PRIMARY KEY,
    kind TEXT NOT NULL,
    region TEXT NOT NULL,
    active INTEGER NOT NULL,
    created_at REAL NOT NULL,
    doc TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_zones_active ON zones(active);

CREATE TABLE IF NOT EXISTS alerts (
    id TEXT PRIMARY KEY,
    kind TEXT NOT NULL,
    status TEXT NOT NULL,
    severity TEXT NOT NULL,
    subject_id TEXT,
    lat REAL NOT NULL,
    lng REAL NOT NULL,
    created_at REAL NOT NULL,
    version INTEGER NOT NULL DEFAULT 0,
    doc TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_alerts_created ON alerts(created_at);
CREATE INDEX IF NOT EXISTS idx_alerts_subject ON alerts(subject_id);
CREATE INDEX IF NOT EXISTS idx_alerts_latlng ON alerts(lat, lng);

CREATE TABLE IF NOT EXISTS incidents (
    id TEXT PRIMARY KEY,
    reference_number TEXT NOT NULL UNIQUE,
    created_at REAL NOT NULL,
    doc TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS agent_states (
    agent_id TEXT PRIMARY KEY,
    version INTEGER NOT NULL,
    doc TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS sequences (
    name TEXT PRIMARY KEY,
    value INTEGER NOT NULL
);
"""

_AGENT_STATE_FIELDS = {"status", "position", "safety_score", "location_sharing"}


class SQLiteRecordStore:
    """SQLite 기반 레코드 저장소"""

    def __init__(self, path: str, timeout_sec: float = 5.0):
        """
        초기화합니다.

        Args:
            path: SQLite 데이터베이스 파일 경로
            timeout_sec: 잠금 대기 시간 (초)
        """
        self.path = path
        self.timeout = timeout_sec
        log.info(f"SQLiteRecordStore 초기화: {path}")

    async def init(self) -> None:
        """데이터베이스를 초기화합니다."""
        async with self._read() as db:
            await db.executescript(SCHEMA)
        log.info(f"SQLiteRecordStore 스키마 초기화 완료: {self.path}")

    @asynccontextmanager
    async def _read(self) -> AsyncIterator[aiosqlite.Connection]:
        """자동 커밋 연결 (단일 문장용)"""
        try:
            async with aiosqlite.connect(self.path, timeout=self.timeout, isolation_level=None) as db:
                yield db
        except aiosqlite.Error as e:
            raise CollaboratorError(f"sqlite operation failed: {e}") from e

    @asynccontextmanager
    async def _tx(self) -> AsyncIterator[aiosqlite.Connection]:
        """쓰기 잠금을 먼저 잡는 트랜잭션"""
        async with self._read() as db:
            await db.execute("BEGIN IMMEDIATE")
            try:
                yield db
            except BaseException:
                await db.rollback()
                raise
            await db.commit()

    # ---- 구역 ----

    async def get_zone(self, zone_id: str) -> Zone:
        async with self._read() as db:
            cursor = await db.execute("SELECT doc FROM zones WHERE id = ?", (zone_id,))
            row = await cursor.fetchone()
        if row is None:
            raise NotFoundError("zone", zone_id)
        return Zone.model_validate_json(row[0])

    async def list_zones(self, *, kind: Optional[str] = None, region: Optional[str] = None,
                         active: Optional[bool] = None) -> List[Zone]:
        clauses, params = [], []
        if kind is not None:
            clauses.append("kind = ?")
            params.append(kind)
        if region is not None:
            clauses.append("region = ?")
            params.append(region)
        if active is not None:
            clauses.append("active = ?")
            params.append(1 if active else 0)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        async with self._read() as db:
            cursor = await db.execute(
                f"SELECT doc FROM zones {where} ORDER BY created_at DESC", params
            )
            rows = await cursor.fetchall()
        return [Zone.model_validate_json(r[0]) for r in rows]

    async def save_zone(self, zone: Zone) -> Zone:
        async with self._read() as db:
            await db.execute(
                "INSERT INTO zones (id, kind, region, active, created_at, doc) VALUES (?, ?, ?, ?, ?, ?) "
                "ON CONFLICT(id) DO UPDATE SET kind = excluded.kind, region = excluded.region, "
                "active = excluded.active, doc = excluded.doc",
                (zone.id, zone.kind, zone.region, 1 if zone.active else 0,
                 zone.created_at.timestamp(), zone.model_dump_json())
            )
        return zone

    async def delete_zone(self, zone_id: str) -> None:
        async with self._read() as db:
            cursor = await db.execute("DELETE FROM zones WHERE id = ?", (zone_id,))
            if cursor.rowcount == 0:
                raise NotFoundError("zone", zone_id)

    # ---- 경보 ----

    async def get_alert(self, alert_id: str) -> Alert:
        async with self._read() as db:
            cursor = await db.execute("SELECT doc FROM alerts WHERE id = ?", (alert_id,))
            row = await cursor.fetchone()
        if row is None:
            raise NotFoundError("alert", alert_id)
        return Alert.model_validate_json(row[0])

    async def insert_alert(self, alert: Alert) -> Alert:
        async with self._read() as db:
            await self._insert_alert(db, alert)
        return alert

    async def _insert_alert(self, db: aiosqlite.Connection, alert: Alert) -> None:
        await db.execute(
            "INSERT INTO alerts (id, kind, status, severity, subject_id, lat, lng, created_at, version, doc) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (alert.id, alert.kind.value, alert.status.value, alert.severity, alert.subject_id,
             alert.location.latitude, alert.location.longitude, alert.created_at.timestamp(),
             alert.version, alert.model_dump_json())
        )

    async def update_alert(self, alert: Alert, expected_version: int) -> Alert:
        saved = alert.model_copy(update={"version": expected_version + 1})
        async with self._tx() as db:
            cursor = await db.execute(
                "UPDATE alerts SET status = ?, severity = ?, version = ?, doc = ? "
                "WHERE id = ? AND version = ?",
                (saved.status.value, saved.severity, saved.version, saved.model_dump_json(),
                 alert.id, expected_version)
            )
            if cursor.rowcount == 0:
                cursor = await db.execute("SELECT 1 FROM alerts WHERE id = ?", (alert.id,))
                if await cursor.fetchone() is None:
                    raise NotFoundError("alert", alert.id)
                raise StaleRecordError("alert", alert.id, expected_version)
        return saved

    async def delete_alert(self, alert_id: str) -> None:
        async with self._read() as db:
            cursor = await db.execute("DELETE FROM alerts WHERE id = ?", (alert_id,))
            if cursor.rowcount == 0:
                raise NotFoundError("alert", alert_id)

    async def list_alerts(self, *, subject_id: Optional[str] = None, kind: Optional[str] = None,
                          status: Optional[str] = None, severity: Optional[str] = None,
                          offset: int = 0, limit: int = 20) -> Tuple[List[Alert], int]:
        clauses, params = [], []
        for column, value in (("subject_id", subject_id), ("kind", kind),
                              ("status", status), ("severity", severity)):
            if value is not None:
                clauses.append(f"{column} = ?")
                params.append(value)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        async with self._read() as db:
            cursor = await db.execute(f"SELECT COUNT(*) FROM alerts {where}", params)
            total = (await cursor.fetchone())[0]
            cursor = await db.execute(
                f"SELECT doc FROM alerts {where} ORDER BY created_at DESC LIMIT ? OFFSET ?",
                [*params, limit, offset]
            )
            rows = await cursor.fetchall()
        return [Alert.model_validate_json(r[0]) for r in rows], total

    async def recent_alerts(self, center: Position, within_m: float, since: datetime,
                            kinds: Iterable[str]) -> List[Alert]:
        kinds = list(kinds)
        if not kinds:
            return []
        min_lat, min_lng, max_lat, max_lng = bounding_box(center.latitude, center.longitude, within_m)
        marks = ", ".join("?" for _ in kinds)
        async with self._read() as db:
            cursor = await db.execute(
                f"SELECT doc FROM alerts WHERE kind IN ({marks}) AND created_at >= ? "
                "AND lat BETWEEN ? AND ? AND lng BETWEEN ? AND ?",
                [*kinds, since.timestamp(), min_lat, max_lat, min_lng, max_lng]
            )
            rows = await cursor.fetchall()
        # 경계 상자는 후보 축소용, 정확한 거리로 다시 필터
        alerts = [Alert.model_validate_json(r[0]) for r in rows]
        return [a for a in alerts if distance_meters(center, a.location) <= within_m]

    # ---- 사건 ----

    async def get_incident(self, incident_id: str) -> Incident:
        async with self._read() as db:
            cursor = await db.execute("SELECT doc FROM incidents WHERE id = ?", (incident_id,))
            row = await cursor.fetchone()
        if row is None:
            raise NotFoundError("incident", incident_id)
        return Incident.model_validate_json(row[0])

    async def get_incident_by_reference(self, reference_number: str) -> Incident:
        async with self._read() as db:
            cursor = await db.execute(
                "SELECT doc FROM incidents WHERE reference_number = ?", (reference_number,)
            )
            row = await cursor.fetchone()
        if row is None:
            raise NotFoundError("incident", reference_number)
        return Incident.model_validate_json(row[0])

    async def insert_incident_with_alert(self, incident: Incident, alert: Alert) -> Tuple[Incident, Alert]:
        async with self._tx() as db:
            try:
                await db.execute(
                    "INSERT INTO incidents (id, reference_number, created_at, doc) VALUES (?, ?, ?, ?)",
                    (incident.id, incident.reference_number, incident.created_at.timestamp(),
                     incident.model_dump_json())
                )
            except aiosqlite.IntegrityError:
                raise StaleRecordError("incident", incident.reference_number, 0) from None
            await self._insert_alert(db, alert)
        return incident, alert

    async def update_incident(self, incident: Incident) -> Incident:
        async with self._tx() as db:
            cursor = await db.execute(
                "SELECT reference_number FROM incidents WHERE id = ?", (incident.id,)
            )
            row = await cursor.fetchone()
            if row is None:
                raise NotFoundError("incident", incident.id)
            # 참조번호는 변경 불가
            incident = incident.model_copy(update={"reference_number": row[0]})
            await db.execute(
                "UPDATE incidents SET doc = ? WHERE id = ?",
                (incident.model_dump_json(), incident.id)
            )
        return incident

    async def next_sequence(self, name: str) -> int:
        async with self._tx() as db:
            await db.execute(
                "INSERT INTO sequences (name, value) VALUES (?, 1) "
                "ON CONFLICT(name) DO UPDATE SET value = value + 1",
                (name,)
            )
            cursor = await db.execute("SELECT value FROM sequences WHERE name = ?", (name,))
            row = await cursor.fetchone()
        return row[0]

    # ---- 여행자 상태 ----

    async def get_agent_state(self, agent_id: str) -> Optional[AgentState]:
        async with self._read() as db:
            cursor = await db.execute("SELECT doc FROM agent_states WHERE agent_id = ?", (agent_id,))
            row = await cursor.fetchone()
        return AgentState.model_validate_json(row[0]) if row else None

    async def update_agent_state(self, agent_id: str, **changes) -> AgentState:
        unknown = set(changes) - _AGENT_STATE_FIELDS
        if unknown:
            raise ValidationError(f"unknown agent state fields: {sorted(unknown)}")
        async with self._tx() as db:
            cursor = await db.execute("SELECT doc FROM agent_states WHERE agent_id = ?", (agent_id,))
            row = await cursor.fetchone()
            state = AgentState.model_validate_json(row[0]) if row else AgentState(agent_id=agent_id)
            changes["version"] = state.version + 1
            changes["updated_at"] = utcnow()
            state = AgentState.model_validate({**state.model_dump(), **changes})
            await db.execute(
                "INSERT INTO agent_states (agent_id, version, doc) VALUES (?, ?, ?) "
                "ON CONFLICT(agent_id) DO UPDATE SET version = excluded.version, doc = excluded.doc",
                (agent_id, state.version, state.model_dump_json())
            )
        return state

    async def get_counts(self) -> dict:
        """
        테이블별 레코드 수를 반환합니다.

        Returns:
            {"zones": n, "alerts": n, "incidents": n, "agent_states": n}
        """
        counts = {}
        async with self._read() as db:
            for table in ("zones", "alerts", "incidents", "agent_states"):
                cursor = await db.execute(f"SELECT COUNT(*) FROM {table}")
                counts[table] = (await cursor.fetchone())[0]
        return counts
