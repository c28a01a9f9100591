# safetrip/settings.py
from __future__ import annotations
from typing import List
from pydantic import BaseModel, Field

class ScoringConfig(BaseModel):
    base_score: int = 85
    inside_risk_penalty: int = 30
    near_risk_penalty: int = 15
    near_radius_factor: float = 2.0            # 반경의 배수까지 "근접"
    night_penalty: int = 10
    night_start_hour: int = 22                 # [22, 24)
    night_end_hour: int = 5                    # [0, 5]
    incident_radius_m: float = 1000.0
    incident_window_hours: float = 24.0
    incident_penalty: int = 5
    incident_kinds: List[str] = Field(default_factory=lambda: ["sos", "incident"])
    timezone: str | None = None                # IANA 이름, None이면 now 그대로 사용

class ZoneConfig(BaseModel):
    nearby_default_radius_m: float = 5000.0

class AlertConfig(BaseModel):
    sos_default_severity: str = "critical"
    manual_default_severity: str = "medium"
    transition_conflict_retries: int = 3
    notify_on_transition: bool = True
    page_limit_max: int = 100

class IncidentConfig(BaseModel):
    reference_prefix: str = "EFIR"
    responder_departments: List[str] = Field(
        default_factory=lambda: ["Police Department", "Tourism Department"]
    )
    default_severity: str = "medium"

class NotificationConfig(BaseModel):
    enabled: bool = True
    geofence_entry_alerts: bool = True
    sms_api_url: str = "https://api.textlocal.in/send/"
    sms_api_key: str = ""
    sms_sender: str = "SAFETRIP"
    sms_timeout_sec: int = 10
    email_host: str = ""
    email_port: int = 587
    email_user: str = ""
    email_password: str = ""
    email_from: str = ""
    email_starttls: bool = True

class Reliability(BaseModel):
    db_path: str = "/data/safetrip.db"
    outbox_path: str = "/data/outbox.db"
    accounts_path: str = "/data/accounts.json"   # 계정 디렉터리 시드 파일
    publish_max_retries: int = 10
    backoff_initial_sec: float = 0.5
    backoff_max_sec: float = 30.0
    poll_interval_sec: float = 1.0

class Observability(BaseModel):
    http_port: int = 8099
    metrics_enabled: bool = True
    service_name: str = "SafeTrip"
    build_version: str = "0.3.0"
    build_date: str = "2025-01-01"
    log_level: str = "INFO"
    log_json: bool = False                     # stdout에 JSON 한 줄씩 기록

class Settings(BaseModel):
    dry_run: bool = False

    # 하위 섹션 (기본값/팩토리로 누락 방지)
    scoring: ScoringConfig = Field(default_factory=ScoringConfig)
    zones: ZoneConfig = Field(default_factory=ZoneConfig)
    alerts: AlertConfig = Field(default_factory=AlertConfig)
    incidents: IncidentConfig = Field(default_factory=IncidentConfig)
    notification: NotificationConfig = Field(default_factory=NotificationConfig)
    reliability: Reliability = Field(default_factory=Reliability)
    observability: Observability = Field(default_factory=Observability)
