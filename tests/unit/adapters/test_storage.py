"""
Storage Adapter 모듈 단위 테스트

이 모듈은 SQLite/메모리 저장소 어댑터와 Outbox의 기능을 테스트합니다.
"""

import pytest
import json
import os
import time
from datetime import timedelta

from safetrip.adapters.storage import (
    InMemoryAccountDirectory, InMemoryRecordStore, SQLiteOutbox, SQLiteRecordStore,
)
from safetrip.core.errors import NotFoundError, StaleRecordError, ValidationError
from safetrip.core.models import (
    AgentStatus, Alert, AlertKind, AlertStatus, Incident, Zone, make_position, utcnow,
)

HERE = make_position(28.6139, 77.2090)


def _alert(**overrides):
    data = dict(kind=AlertKind.SOS, subject_id="tourist-1", location=HERE, severity="high", message="help")
    data.update(overrides)
    return Alert(**data)


def _incident(reference="EFIR-20250101-000001", **overrides):
    data = dict(reporter_id="tourist-1", reference_number=reference, type="theft",
                title="Bag", description="Bag stolen", location=HERE)
    data.update(overrides)
    return Incident(**data)


@pytest.fixture(params=["memory", "sqlite"])
async def record_store(request, temp_db_path):
    """두 저장소 구현에 같은 계약 테스트를 적용"""
    if request.param == "memory":
        return InMemoryRecordStore()
    store = SQLiteRecordStore(temp_db_path)
    await store.init()
    return store


class TestRecordStoreContract:
    """레코드 저장소 계약 테스트"""

    @pytest.mark.asyncio
    async def test_zone_crud(self, record_store, risk_zone, neutral_zone):
        await record_store.save_zone(risk_zone)
        await record_store.save_zone(neutral_zone.model_copy(update={"active": False}))

        assert await record_store.get_zone(risk_zone.id) == risk_zone
        active = await record_store.list_zones(active=True)
        assert [z.id for z in active] == [risk_zone.id]
        assert len(await record_store.list_zones(region="Delhi")) == 2
        assert [z.id for z in await record_store.list_zones(kind="neutral")] == [neutral_zone.id]

        await record_store.delete_zone(risk_zone.id)
        with pytest.raises(NotFoundError):
            await record_store.get_zone(risk_zone.id)
        with pytest.raises(NotFoundError):
            await record_store.delete_zone(risk_zone.id)

    @pytest.mark.asyncio
    async def test_alert_optimistic_version(self, record_store):
        alert = await record_store.insert_alert(_alert())

        updated = await record_store.update_alert(
            alert.model_copy(update={"status": AlertStatus.ACKNOWLEDGED}), expected_version=0
        )
        assert updated.version == 1
        assert (await record_store.get_alert(alert.id)).status is AlertStatus.ACKNOWLEDGED

        with pytest.raises(StaleRecordError):
            await record_store.update_alert(
                alert.model_copy(update={"status": AlertStatus.RESPONDING}), expected_version=0
            )
        with pytest.raises(NotFoundError):
            await record_store.update_alert(_alert(), expected_version=0)

    @pytest.mark.asyncio
    async def test_list_alerts_filters_and_paging(self, record_store):
        for i in range(3):
            await record_store.insert_alert(_alert(message=f"m{i}"))
        await record_store.insert_alert(_alert(subject_id="tourist-2", kind=AlertKind.MANUAL, severity="low"))

        page, total = await record_store.list_alerts(subject_id="tourist-1", limit=2)
        assert total == 3
        assert len(page) == 2

        page, total = await record_store.list_alerts(kind="manual")
        assert total == 1
        assert page[0].severity == "low"

    @pytest.mark.asyncio
    async def test_recent_alerts_window_radius_kind(self, record_store):
        now = utcnow()
        near = await record_store.insert_alert(_alert(created_at=now - timedelta(hours=1)))
        await record_store.insert_alert(_alert(created_at=now - timedelta(hours=30)))
        await record_store.insert_alert(_alert(location=make_position(28.7, 77.2090)))
        await record_store.insert_alert(_alert(kind=AlertKind.MANUAL))

        found = await record_store.recent_alerts(HERE, 1000, now - timedelta(hours=24), ["sos", "incident"])

        assert [a.id for a in found] == [near.id]

    @pytest.mark.asyncio
    async def test_incident_with_alert_atomic(self, record_store):
        incident = _incident()
        alert = _alert(kind=AlertKind.INCIDENT, incident_id=incident.id)
        await record_store.insert_incident_with_alert(incident.model_copy(update={"alert_id": alert.id}), alert)

        stored = await record_store.get_incident_by_reference(incident.reference_number)
        assert stored.alert_id == alert.id
        assert (await record_store.get_alert(alert.id)).incident_id == incident.id

        # 같은 참조번호는 거부되고 경보도 추가되지 않음
        dup_alert = _alert(kind=AlertKind.INCIDENT)
        with pytest.raises(StaleRecordError):
            await record_store.insert_incident_with_alert(_incident(), dup_alert)
        with pytest.raises(NotFoundError):
            await record_store.get_alert(dup_alert.id)

    @pytest.mark.asyncio
    async def test_update_incident_keeps_reference(self, record_store):
        incident = _incident()
        await record_store.insert_incident_with_alert(incident, _alert(kind=AlertKind.INCIDENT))

        saved = await record_store.update_incident(
            incident.model_copy(update={"assigned_responder": "officer-1", "reference_number": "X"})
        )
        assert saved.reference_number == incident.reference_number
        assert (await record_store.get_incident(incident.id)).assigned_responder == "officer-1"

        with pytest.raises(NotFoundError):
            await record_store.update_incident(_incident(reference="EFIR-20250101-000009"))

    @pytest.mark.asyncio
    async def test_sequences_increment(self, record_store):
        values = [await record_store.next_sequence("incident_reference") for _ in range(3)]
        assert values == [1, 2, 3]
        assert await record_store.next_sequence("other") == 1

    @pytest.mark.asyncio
    async def test_agent_state_partial_update(self, record_store):
        assert await record_store.get_agent_state("tourist-1") is None

        first = await record_store.update_agent_state("tourist-1", position=HERE, safety_score=70)
        second = await record_store.update_agent_state("tourist-1", status=AgentStatus.EMERGENCY)

        assert second.version == first.version + 1
        assert second.safety_score == 70
        assert second.position == HERE
        assert second.status is AgentStatus.EMERGENCY
        assert second.location_sharing is True

        with pytest.raises(ValidationError):
            await record_store.update_agent_state("tourist-1", name="nope")


class TestSQLiteRecordStore:
    """SQLite 저장소 전용 테스트"""

    @pytest.mark.asyncio
    async def test_persists_across_instances(self, temp_db_path, risk_zone):
        store = SQLiteRecordStore(temp_db_path)
        await store.init()
        await store.save_zone(risk_zone)

        reopened = SQLiteRecordStore(temp_db_path)
        await reopened.init()
        assert await reopened.get_zone(risk_zone.id) == risk_zone

    @pytest.mark.asyncio
    async def test_get_counts(self, temp_db_path):
        store = SQLiteRecordStore(temp_db_path)
        await store.init()
        await store.insert_alert(_alert())
        counts = await store.get_counts()
        assert counts == {"zones": 0, "alerts": 1, "incidents": 0, "agent_states": 0}


class TestInMemoryAccountDirectory:
    """메모리 계정 디렉터리 테스트"""

    @pytest.mark.asyncio
    async def test_on_duty_filter(self, directory):
        all_on_duty = await directory.on_duty_authorities()
        assert {a.id for a in all_on_duty} == {"officer-1", "officer-2"}
        police = await directory.on_duty_authorities(["Police Department"])
        assert [a.id for a in police] == ["officer-1"]

    @pytest.mark.asyncio
    async def test_resolve_missing(self, directory):
        with pytest.raises(NotFoundError):
            await directory.resolve_agent("ghost")
        directory.remove("officer-1")
        with pytest.raises(NotFoundError):
            await directory.resolve_authority("officer-1")

    @pytest.mark.asyncio
    async def test_from_file(self, tmp_path):
        path = tmp_path / "accounts.json"
        path.write_text(json.dumps({
            "agents": [{"id": "a1", "name": "A", "phone": "+910000000000"}],
            "authorities": [{"id": "o1", "name": "O", "department": "Police Department", "on_duty": True}],
        }), encoding="utf-8")

        directory = InMemoryAccountDirectory.from_file(str(path))

        assert (await directory.resolve_agent("a1")).name == "A"
        assert [a.id for a in await directory.on_duty_authorities()] == ["o1"]

    def test_from_missing_file(self, tmp_path):
        directory = InMemoryAccountDirectory.from_file(str(tmp_path / "missing.json"))
        assert isinstance(directory, InMemoryAccountDirectory)


class TestSQLiteOutbox:
    """SQLite Outbox 테스트"""

    @pytest.fixture
    async def outbox(self, temp_db_path):
        """테스트용 SQLite Outbox"""
        box = SQLiteOutbox(temp_db_path)
        await box.init()
        return box

    @pytest.mark.asyncio
    async def test_outbox_init_schema(self, outbox):
        """Outbox 스키마 초기화 테스트"""
        assert os.path.exists(outbox.path)
        assert await outbox.get_count() == 0

    @pytest.mark.asyncio
    async def test_enqueue_and_peek(self, outbox):
        """항목 추가 후 가장 오래된 항목 조회"""
        first = await outbox.enqueue("sms", ["+911"], {"text": "one"})
        await outbox.enqueue("email", ["a@x"], {"subject": "two", "text": "two"})

        item = await outbox.peek_due()
        assert item.id == first
        assert item.channel == "sms"
        assert item.recipients == ["+911"]
        assert item.payload == {"text": "one"}
        assert item.attempts == 0
        assert await outbox.get_count() == 2

    @pytest.mark.asyncio
    async def test_mark_attempt_delays_item(self, outbox):
        """실패 기록 후 지연 시각 전에는 조회되지 않음"""
        oid = await outbox.enqueue("sms", ["+911"], {"text": "one"})
        await outbox.mark_attempt(oid, delay_sec=60, error="gateway 500")

        assert await outbox.peek_due() is None
        later = await outbox.peek_due(now=time.time() + 120)
        assert later.attempts == 1
        assert later.last_error == "gateway 500"

    @pytest.mark.asyncio
    async def test_delete(self, outbox):
        oid = await outbox.enqueue("sms", ["+911"], {"text": "one"})
        await outbox.delete(oid)
        assert await outbox.get_count() == 0
        assert await outbox.peek_due() is None
