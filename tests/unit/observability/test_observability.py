"""
Observability 모듈 단위 테스트

이 모듈은 헬스 체크, 메트릭, 로깅 등의 관찰 가능성 기능을 테스트합니다.
"""

import json
import logging
import pytest
from loguru import logger
from unittest.mock import AsyncMock, Mock, patch
from fastapi.testclient import TestClient
from safetrip.observability.health import create_app
from safetrip.observability.metrics import (
    location_updates, alerts_created, alert_transitions, notifications_failed,
    safety_score, outbox_size, active_zones,
)
from safetrip.observability.logging_setup import (
    InterceptHandler, STDLIB_LOGGERS, get_logger, setup_logging, setup_logging_dev,
)
from safetrip.core.zones import ZoneIndex
from safetrip.main import build_settings
from safetrip.settings import Observability, Settings


class TestHealthEndpoints:
    """헬스 체크 엔드포인트 테스트"""

    @pytest.fixture
    def settings(self, sample_settings):
        return sample_settings

    @pytest.fixture
    def client(self, settings):
        """테스트용 클라이언트"""
        return TestClient(create_app(settings))

    def test_health_endpoint(self, client):
        """헬스 체크 엔드포인트 테스트"""
        response = client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "ok"
        assert data["service"] == "test-service"
        assert "timestamp" in data

    def test_ready_without_backends(self, client):
        response = client.get("/ready")
        assert response.status_code == 200
        assert response.json()["status"] == "ready"

    def test_ready_reports_counts(self, settings):
        store = Mock()
        store.get_counts = AsyncMock(return_value={"zones": 2, "alerts": 5, "incidents": 1, "agent_states": 3})
        outbox = Mock()
        outbox.get_count = AsyncMock(return_value=4)
        client = TestClient(create_app(settings, store=store, outbox=outbox))

        data = client.get("/ready").json()

        assert data["records"]["alerts"] == 5
        assert data["outbox_size"] == 4

    def test_ready_unavailable_when_store_fails(self, settings):
        store = Mock()
        store.get_counts = AsyncMock(side_effect=RuntimeError("disk gone"))
        client = TestClient(create_app(settings, store=store))

        response = client.get("/ready")

        assert response.status_code == 503
        assert response.json()["status"] == "unavailable"

    def test_metrics_endpoint(self, client):
        """메트릭 엔드포인트 테스트"""
        location_updates.inc()
        response = client.get("/metrics")

        assert response.status_code == 200
        assert "location_updates_total" in response.text
        assert "uptime_seconds" in response.text

    def test_metrics_disabled(self, settings):
        settings.observability.metrics_enabled = False
        client = TestClient(create_app(settings))
        assert client.get("/metrics").status_code == 503

    def test_info_endpoint(self, client):
        """서비스 정보 엔드포인트 테스트"""
        data = client.get("/info").json()
        assert data["service"] == "test-service"
        assert data["version"] == "1.0.0"
        assert data["dry_run"] is False
        assert "uptime_seconds" in data

    def test_root_endpoint(self, client):
        data = client.get("/").json()
        assert set(data["endpoints"]) == {"health", "ready", "metrics", "info"}


class TestMetricsCollection:
    """메트릭 수집 테스트"""

    def test_labelled_counters(self):
        before = alerts_created.labels(kind="sos", severity="critical")._value.get()
        alerts_created.labels(kind="sos", severity="critical").inc()
        assert alerts_created.labels(kind="sos", severity="critical")._value.get() == before + 1

        alert_transitions.labels(from_status="active", to_status="acknowledged").inc()
        notifications_failed.labels(channel="sms", stage="enqueue").inc()

    def test_score_histogram(self):
        safety_score.observe(40)
        safety_score.observe(85)

    def test_outbox_gauge(self):
        outbox_size.set(7)
        assert outbox_size._value.get() == 7

    def test_active_zones_gauge_tracks_index(self, risk_zone, neutral_zone):
        index = ZoneIndex([risk_zone, neutral_zone])
        assert active_zones._value.get() == 2
        index.remove(risk_zone.id)
        assert active_zones._value.get() == 1


class TestLoggingSetup:
    """로깅 설정 테스트"""

    def _record(self, levelname="INFO", levelno=20, exc_info=None):
        record = Mock()
        record.levelname = levelname
        record.levelno = levelno
        record.getMessage.return_value = "Test message"
        record.exc_info = exc_info
        return record

    def test_intercept_handler_emit(self):
        """InterceptHandler가 loguru로 전달"""
        with patch('safetrip.observability.logging_setup.logger') as mock_logger:
            InterceptHandler().emit(self._record())

            mock_logger.opt.assert_called_once()
            mock_logger.opt.return_value.log.assert_called_once_with("INFO", "Test message")

    def test_intercept_handler_emit_invalid_level(self):
        """알 수 없는 레벨은 숫자 레벨로 전달"""
        with patch('safetrip.observability.logging_setup.logger') as mock_logger:
            mock_logger.level.side_effect = ValueError("unknown")
            InterceptHandler().emit(self._record("INVALID", 99))

            mock_logger.opt.return_value.log.assert_called_once_with(99, "Test message")

    def test_setup_logging_dev(self):
        """개발 환경 로깅 설정 테스트"""
        with patch('logging.basicConfig') as mock_basic_config:
            setup_logging_dev("DEBUG")
            mock_basic_config.assert_called_once()

    @pytest.fixture
    def reset_sinks(self):
        yield
        logger.remove()

    def test_json_sink_carries_service_and_name(self, capsys, reset_sinks):
        with patch('logging.basicConfig'):
            setup_logging(Observability(log_json=True, service_name="safetrip-test"))
        get_logger("safetrip.orchestrator").info("위치 갱신")

        line = capsys.readouterr().out.strip().splitlines()[-1]
        record = json.loads(line)["record"]
        assert record["message"] == "위치 갱신"
        assert record["extra"]["service"] == "safetrip-test"
        assert record["extra"]["name"] == "safetrip.orchestrator"

    def test_level_filter(self, capsys, reset_sinks):
        with patch('logging.basicConfig'):
            setup_logging(Observability(log_level="warning"))
        get_logger().info("hidden")
        get_logger().warning("shown")

        out = capsys.readouterr().out
        assert "shown" in out
        assert "hidden" not in out

    def test_stdlib_loggers_routed(self):
        with patch('logging.basicConfig'):
            setup_logging_dev("INFO")
        for name in STDLIB_LOGGERS:
            std = logging.getLogger(name)
            assert std.propagate is False
            assert isinstance(std.handlers[0], InterceptHandler)

    def test_get_logger_binds_name(self):
        with patch('safetrip.observability.logging_setup.logger') as mock_logger:
            get_logger("safetrip.test", request_id="r1")
            mock_logger.bind.assert_called_once_with(name="safetrip.test", request_id="r1")


class TestSettings:
    """설정 및 환경 변수 오버레이 테스트"""

    def test_defaults(self):
        s = Settings()
        assert s.scoring.base_score == 85
        assert s.zones.nearby_default_radius_m == 5000
        assert s.incidents.reference_prefix == "EFIR"
        assert s.incidents.responder_departments == ["Police Department", "Tourism Department"]

    def test_env_overlay(self, monkeypatch):
        monkeypatch.setenv("SCORE_TIMEZONE", "Asia/Kolkata")
        monkeypatch.setenv("DB_PATH", "/tmp/x.db")
        monkeypatch.setenv("METRICS_PORT", "9100")
        monkeypatch.setenv("DRY_RUN", "true")
        monkeypatch.setenv("LOG_JSON", "1")
        monkeypatch.setenv("RESPONDER_DEPARTMENTS", "Police Department, Coast Guard")

        s = build_settings()

        assert s.scoring.timezone == "Asia/Kolkata"
        assert s.reliability.db_path == "/tmp/x.db"
        assert s.observability.http_port == 9100
        assert s.dry_run is True
        assert s.observability.log_json is True
        assert s.incidents.responder_departments == ["Police Department", "Coast Guard"]
