# safetrip/main.py
import os, asyncio, signal
from typing import Optional
import aiosqlite
import uvicorn
from safetrip.settings import Settings
from safetrip.observability.health import create_app
from safetrip.observability.logging_setup import setup_logging, setup_logging_dev, get_logger
from safetrip.adapters.storage import InMemoryAccountDirectory, SQLiteRecordStore, SQLiteOutbox
from safetrip.adapters.notify import (
    EmailSender, LoggingNotificationDispatcher, OutboxNotificationDispatcher, SmsSender,
)
from safetrip.orchestrators import SafetyOrchestrator
from safetrip.common.retry import retry_with_backoff
from safetrip.core.errors import CollaboratorError

def _b(name, default=False): return os.getenv(name, str(default)).lower() in ("1","true","yes","on")

def build_settings() -> Settings:
    s = Settings()
    # 플래그
    s.dry_run = _b("DRY_RUN", s.dry_run)

    # 점수
    s.scoring.timezone = os.getenv("SCORE_TIMEZONE", s.scoring.timezone)
    s.scoring.base_score = int(os.getenv("SCORE_BASE", s.scoring.base_score))
    s.scoring.incident_radius_m = float(os.getenv("SCORE_INCIDENT_RADIUS_M", s.scoring.incident_radius_m))
    s.scoring.incident_window_hours = float(os.getenv("SCORE_INCIDENT_WINDOW_HOURS", s.scoring.incident_window_hours))

    # 구역/경보/사건
    s.zones.nearby_default_radius_m = float(os.getenv("NEARBY_RADIUS_M", s.zones.nearby_default_radius_m))
    s.alerts.transition_conflict_retries = int(os.getenv("TRANSITION_RETRIES", s.alerts.transition_conflict_retries))
    s.alerts.notify_on_transition = _b("NOTIFY_ON_TRANSITION", s.alerts.notify_on_transition)
    s.incidents.reference_prefix = os.getenv("INCIDENT_REF_PREFIX", s.incidents.reference_prefix)
    departments = os.getenv("RESPONDER_DEPARTMENTS")
    if departments:
        s.incidents.responder_departments = [d.strip() for d in departments.split(",") if d.strip()]

    # 알림
    s.notification.enabled = _b("NOTIFY_ENABLED", s.notification.enabled)
    s.notification.geofence_entry_alerts = _b("GEOFENCE_ENTRY_ALERTS", s.notification.geofence_entry_alerts)
    s.notification.sms_api_url = os.getenv("SMS_API_URL", s.notification.sms_api_url)
    s.notification.sms_api_key = os.getenv("SMS_API_KEY", s.notification.sms_api_key)
    s.notification.sms_sender = os.getenv("SMS_SENDER", s.notification.sms_sender)
    s.notification.email_host = os.getenv("EMAIL_HOST", s.notification.email_host)
    s.notification.email_port = int(os.getenv("EMAIL_PORT", s.notification.email_port))
    s.notification.email_user = os.getenv("EMAIL_USER", s.notification.email_user)
    s.notification.email_password = os.getenv("EMAIL_PASSWORD", s.notification.email_password)
    s.notification.email_from = os.getenv("EMAIL_FROM", s.notification.email_from)

    # 신뢰성
    s.reliability.db_path = os.getenv("DB_PATH", s.reliability.db_path)
    s.reliability.outbox_path = os.getenv("OUTBOX_PATH", s.reliability.outbox_path)
    s.reliability.accounts_path = os.getenv("ACCOUNTS_PATH", s.reliability.accounts_path)
    s.reliability.publish_max_retries = int(os.getenv("NOTIFY_MAX_RETRIES", s.reliability.publish_max_retries))

    # 관측성
    s.observability.metrics_enabled = _b("METRICS_ENABLED", s.observability.metrics_enabled)
    s.observability.http_port = int(os.getenv("METRICS_PORT", s.observability.http_port))
    s.observability.log_level = os.getenv("LOG_LEVEL", s.observability.log_level)
    s.observability.log_json = _b("LOG_JSON", s.observability.log_json)

    return s

# 저장소 초기화 재시도 대상 (어댑터는 드라이버 오류를 CollaboratorError로 감쌈)
STARTUP_RETRY_ON = (CollaboratorError, aiosqlite.Error, OSError)

async def init_with_retry(component, max_retries: int = 3, base_delay: float = 1.0):
    await retry_with_backoff(component.init, max_retries=max_retries, base_delay=base_delay,
                             retry_on=STARTUP_RETRY_ON)

async def start_http(settings: Settings, store=None, outbox=None) -> Optional[asyncio.Task]:
    if not settings.observability.metrics_enabled: return None
    app = create_app(settings, store=store, outbox=outbox)
    return asyncio.create_task(uvicorn.Server(
        uvicorn.Config(app, host="0.0.0.0", port=settings.observability.http_port, log_level="info")
    ).serve())

async def main():
    # 로거 초기화 (환경변수 LOG_LEVEL 우선, 없으면 설정 사용)
    initial_level = os.getenv("LOG_LEVEL", "INFO")
    setup_logging_dev(initial_level)
    log = get_logger("safetrip.main")

    s = build_settings()
    setup_logging(s.observability)
    log.info("설정 로드 완료")

    store = SQLiteRecordStore(s.reliability.db_path)
    await init_with_retry(store)
    outbox = SQLiteOutbox(s.reliability.outbox_path)
    await init_with_retry(outbox)
    directory = InMemoryAccountDirectory.from_file(s.reliability.accounts_path)

    worker = None
    if s.dry_run:
        dispatcher = LoggingNotificationDispatcher()
        log.warning("DRY_RUN 모드: 알림은 로그로만 기록됩니다")
    else:
        dispatcher = worker = OutboxNotificationDispatcher(
            outbox,
            {"sms": SmsSender.from_config(s.notification), "email": EmailSender.from_config(s.notification)},
            max_retries=s.reliability.publish_max_retries,
            backoff_initial=s.reliability.backoff_initial_sec,
            backoff_max=s.reliability.backoff_max_sec,
            poll_interval=s.reliability.poll_interval_sec,
        )
    log.info("알림 발송기 생성 완료")

    orch = SafetyOrchestrator(store, directory, dispatcher, s)
    await orch.start()
    log.info("오케스트레이터 생성 완료")

    http_task = await start_http(s, store=store, outbox=outbox)
    if http_task:
        log.info("HTTP 서버 시작됨")

    stop = asyncio.Future()
    try:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            try: loop.add_signal_handler(sig, lambda: (not stop.done()) and stop.set_result(True))
            except NotImplementedError: pass
    except RuntimeError: pass

    worker_task = asyncio.create_task(worker.run()) if worker else None
    log.info("SafeTrip 서비스 시작")
    await stop
    if worker:
        await worker.stop()
        worker_task.cancel()
    if http_task: http_task.cancel()
    log.info("SafeTrip 서비스 종료")

def run():
    asyncio.run(main())

if __name__ == "__main__":
    run()
