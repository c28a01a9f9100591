"""
Core domain models for SafeTrip.

This module defines the core domain models using Pydantic v2
for type safety and validation.
"""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional

import pydantic
from pydantic import AfterValidator, BaseModel, ConfigDict, Field, field_validator

from .errors import ValidationError

# 심각도 타입 정의
Severity = Literal["low", "medium", "high", "critical"]

SEVERITY_ORDER = {
    "low": 0,
    "medium": 1,
    "high": 2,
    "critical": 3
}

# 위험 구역 태그 (레거시 "danger" 태그는 risk로 정규화)
RISK_KIND = "risk"
NEUTRAL_KIND = "neutral"
_KIND_ALIASES = {"danger": RISK_KIND}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return uuid.uuid4().hex


def as_utc(value: datetime) -> datetime:
    """UTC 기준 aware datetime으로 변환 (naive 값은 UTC로 간주)"""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


# 저장되는 시각은 모두 UTC aware
UtcDatetime = Annotated[datetime, AfterValidator(as_utc)]


class AlertKind(str, Enum):
    SOS = "sos"
    INCIDENT = "incident"
    MANUAL = "manual"


class AlertStatus(str, Enum):
    ACTIVE = "active"
    ACKNOWLEDGED = "acknowledged"
    RESPONDING = "responding"
    RESOLVED = "resolved"
    CLOSED = "closed"


class AgentStatus(str, Enum):
    ACTIVE = "active"
    EMERGENCY = "emergency"


class Position(BaseModel):
    """기록된 위치 (불변)"""
    model_config = ConfigDict(frozen=True)
    
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)
    timestamp: UtcDatetime = Field(default_factory=utcnow)
    address: Optional[str] = None


class EmergencyContact(BaseModel):
    """여행자가 등록한 비상 연락처"""
    name: str
    phone: Optional[str] = None
    email: Optional[str] = None
    relationship: Optional[str] = None


class Agent(BaseModel):
    """여행자 프로필 (계정 디렉터리 소유)"""
    id: str
    name: str
    phone: Optional[str] = None
    email: Optional[str] = None
    emergency_contact: Optional[EmergencyContact] = None


class Authority(BaseModel):
    """대응 기관 담당자 프로필 (계정 디렉터리 소유)"""
    id: str
    name: str
    department: str
    on_duty: bool = False
    officer_id: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None


class AgentState(BaseModel):
    """여행자 위치/상태 (레코드 저장소 소유)"""
    agent_id: str
    status: AgentStatus = AgentStatus.ACTIVE
    position: Optional[Position] = None
    safety_score: Optional[int] = None
    location_sharing: bool = True
    version: int = 0
    updated_at: UtcDatetime = Field(default_factory=utcnow)


class Zone(BaseModel):
    """원형 지오펜스 구역"""
    model_config = ConfigDict(frozen=True)
    
    id: str = Field(default_factory=new_id)
    name: str = Field(min_length=1)
    kind: str = NEUTRAL_KIND
    center: Position
    radius_m: float = Field(gt=0)
    region: str = Field(min_length=1)
    active: bool = True
    description: Optional[str] = None
    created_by: Optional[str] = None
    created_at: UtcDatetime = Field(default_factory=utcnow)
    updated_at: UtcDatetime = Field(default_factory=utcnow)
    
    @field_validator("kind")
    @classmethod
    def _normalize_kind(cls, value: str) -> str:
        kind = value.strip().lower()
        if not kind:
            raise ValueError("zone kind must not be empty")
        return _KIND_ALIASES.get(kind, kind)
    
    @property
    def is_risk(self) -> bool:
        return self.kind == RISK_KIND


class Alert(BaseModel):
    """경보 레코드 (여행자/담당자는 식별자로만 참조)"""
    id: str = Field(default_factory=new_id)
    kind: AlertKind
    subject_id: Optional[str] = None
    location: Position
    severity: Severity = "medium"
    status: AlertStatus = AlertStatus.ACTIVE
    message: str
    description: Optional[str] = None
    authority_id: Optional[str] = None
    incident_id: Optional[str] = None
    created_at: UtcDatetime = Field(default_factory=utcnow)
    updated_at: UtcDatetime = Field(default_factory=utcnow)
    version: int = 0


IncidentStatus = Literal["reported", "investigating", "resolved", "closed"]


class Incident(BaseModel):
    """신고된 사건 (참조번호는 생성 시 한 번만 부여)"""
    id: str = Field(default_factory=new_id)
    reporter_id: str
    reference_number: str
    type: str = Field(min_length=1)
    title: str = Field(min_length=1)
    description: str = Field(min_length=1)
    location: Position
    severity: Severity = "medium"
    witnesses: List[str] = Field(default_factory=list)
    evidence_refs: List[str] = Field(default_factory=list)
    assigned_responder: Optional[str] = None
    status: IncidentStatus = "reported"
    alert_id: Optional[str] = None
    created_at: UtcDatetime = Field(default_factory=utcnow)


def build(model: type, **data: Any):
    """
    모델을 생성하고 pydantic 검증 오류를 도메인 ValidationError로 변환합니다.
    
    Args:
        model: 생성할 모델 클래스
        **data: 필드 값
        
    Returns:
        검증된 모델 인스턴스
        
    Raises:
        ValidationError: 필드 검증 실패
    """
    try:
        return model.model_validate(data)
    except pydantic.ValidationError as e:
        raise ValidationError(_describe(e)) from e


def make_position(latitude: Any, longitude: Any, timestamp: Optional[datetime] = None,
                  address: Optional[str] = None) -> Position:
    """
    원시 좌표로 Position을 생성합니다.
    
    Raises:
        ValidationError: 좌표 누락 또는 범위 초과
    """
    if latitude is None or longitude is None:
        raise ValidationError("latitude and longitude are required")
    data: Dict[str, Any] = {"latitude": latitude, "longitude": longitude, "address": address}
    if timestamp is not None:
        data["timestamp"] = timestamp
    return build(Position, **data)


def _describe(error: pydantic.ValidationError) -> str:
    parts = []
    for item in error.errors():
        loc = ".".join(str(p) for p in item.get("loc", ()))
        parts.append(f"{loc}: {item.get('msg')}" if loc else str(item.get("msg")))
    return "; ".join(parts)
