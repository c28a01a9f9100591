"""
테스트 설정 및 픽스처

이 모듈은 pytest 설정과 공통 픽스처를 제공합니다.
"""

import pytest
import asyncio
import tempfile
import os
import time
from datetime import datetime, timezone
from safetrip.settings import Settings
from safetrip.adapters.storage import InMemoryRecordStore, InMemoryAccountDirectory
from safetrip.core.models import Agent, Authority, EmergencyContact, Zone, make_position
from safetrip.core.roles import Actor, Role


class RecordingDispatcher:
    """발송 요청을 기록하는 테스트용 발송기"""

    def __init__(self, fail: bool = False):
        self.sent = []
        self.fail = fail

    async def notify(self, channel, recipients, payload):
        if self.fail:
            raise RuntimeError("dispatcher down")
        self.sent.append((channel, list(recipients), dict(payload)))

    def to(self, recipient):
        return [s for s in self.sent if recipient in s[1]]


def _apply_process_tz(monkeypatch, name):
    monkeypatch.setenv("TZ", name)
    if hasattr(time, "tzset"):
        time.tzset()


@pytest.fixture
def process_tz(monkeypatch):
    """프로세스 시간대를 바꾸는 함수를 돌려주고, 끝나면 UTC로 되돌림"""
    if not hasattr(time, "tzset"):
        pytest.skip("time.tzset 미지원 플랫폼")
    yield lambda name: _apply_process_tz(monkeypatch, name)
    monkeypatch.undo()
    time.tzset()


@pytest.fixture
def temp_db_path():
    """임시 데이터베이스 파일 경로"""
    with tempfile.NamedTemporaryFile(suffix='.db', delete=False) as f:
        temp_path = f.name
    yield temp_path
    # 테스트 후 파일 정리
    if os.path.exists(temp_path):
        os.unlink(temp_path)


@pytest.fixture
def sample_settings():
    """테스트용 설정"""
    settings = Settings()
    settings.observability.service_name = "test-service"
    settings.observability.build_version = "1.0.0"
    settings.observability.log_level = "INFO"
    settings.observability.http_port = 8080
    return settings


@pytest.fixture
def noon():
    """야간 감점이 없는 기준 시각"""
    return datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def midnight():
    """야간 감점이 적용되는 기준 시각"""
    return datetime(2025, 3, 1, 23, 0, tzinfo=timezone.utc)


@pytest.fixture
def tourist_agent():
    """비상 연락처가 있는 테스트용 여행자"""
    return Agent(
        id="tourist-1",
        name="Asha",
        phone="+911111111111",
        email="asha@example.com",
        emergency_contact=EmergencyContact(
            name="Ravi", phone="+912222222222", email="ravi@example.com", relationship="brother"
        ),
    )


@pytest.fixture
def police_officer():
    return Authority(
        id="officer-1", name="Inspector Rao", department="Police Department",
        on_duty=True, officer_id="P-77", phone="+913333333333", email="rao@police.example",
    )


@pytest.fixture
def tourism_officer():
    return Authority(
        id="officer-2", name="Officer Sen", department="Tourism Department",
        on_duty=True, phone="+914444444444", email="sen@tourism.example",
    )


@pytest.fixture
def off_duty_officer():
    return Authority(
        id="officer-3", name="Officer Das", department="Police Department",
        on_duty=False, phone="+915555555555",
    )


@pytest.fixture
def store():
    """메모리 레코드 저장소"""
    return InMemoryRecordStore()


@pytest.fixture
def directory(tourist_agent, police_officer, tourism_officer, off_duty_officer):
    """테스트용 계정 디렉터리"""
    return InMemoryAccountDirectory(
        agents=[tourist_agent, Agent(id="tourist-2", name="Lee", phone="+916666666666")],
        authorities=[police_officer, tourism_officer, off_duty_officer],
    )


@pytest.fixture
def dispatcher():
    return RecordingDispatcher()


@pytest.fixture
def failing_dispatcher():
    """항상 실패하는 발송기"""
    return RecordingDispatcher(fail=True)


@pytest.fixture
def tourist_actor():
    return Actor(user_id="tourist-1", role=Role.TOURIST)


@pytest.fixture
def authority_actor():
    return Actor(user_id="officer-1", role=Role.AUTHORITY)


@pytest.fixture
def risk_zone():
    """반경 500m 위험 구역 (뉴델리)"""
    return Zone(
        id="zone-risk", name="Old Market", kind="risk",
        center=make_position(28.6139, 77.2090), radius_m=500, region="Delhi",
    )


@pytest.fixture
def neutral_zone():
    return Zone(
        id="zone-safe", name="Tourist Plaza", kind="neutral",
        center=make_position(28.6200, 77.2100), radius_m=300, region="Delhi",
    )


# pytest 설정
def pytest_configure(config):
    """pytest 설정"""
    # 테스트 프로세스 시간대는 UTC
    os.environ["TZ"] = "UTC"
    if hasattr(time, "tzset"):
        time.tzset()
    config.addinivalue_line(
        "markers", "asyncio: 비동기 테스트 마커"
    )
    config.addinivalue_line(
        "markers", "slow: 느린 테스트 마커"
    )
    config.addinivalue_line(
        "markers", "integration: 통합 테스트 마커"
    )


def pytest_collection_modifyitems(config, items):
    """테스트 아이템 수정"""
    for item in items:
        # 비동기 테스트에 asyncio 마커 추가
        if asyncio.iscoroutinefunction(getattr(item, "function", None)):
            item.add_marker(pytest.mark.asyncio)

        # 느린 테스트 마커 추가
        if "performance" in item.name or "stress" in item.name:
            item.add_marker(pytest.mark.slow)

        # 통합 테스트 마커 추가
        if "integration" in item.name:
            item.add_marker(pytest.mark.integration)
