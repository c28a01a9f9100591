"""
Incident ledger for SafeTrip.

This module files incident reports with unique reference numbers,
pairs each incident with exactly one alert and assigns a responder.
"""

from datetime import datetime
from typing import Iterable, Optional, Protocol, Sequence, Tuple

from safetrip.observability import metrics
from safetrip.observability.logging_setup import get_logger
from safetrip.settings import IncidentConfig
from .errors import ValidationError
from .lifecycle import Notifier
from .models import (
    Alert, AlertKind, AlertStatus, Authority, Incident, Position, Severity, build, utcnow,
)

log = get_logger("safetrip.incidents")

REFERENCE_SEQUENCE = "incident_reference"


class ResponderRanking(Protocol):
    """담당자 선택 전략"""

    def select(self, incident: Incident, candidates: Sequence[Authority]) -> Optional[Authority]:
        ...


class FirstMatchRanking:
    """후보 중 첫 번째 담당자를 선택합니다.

    부하 분산이나 거리 기반 순위는 없습니다.
    """

    def select(self, incident: Incident, candidates: Sequence[Authority]) -> Optional[Authority]:
        return candidates[0] if candidates else None


def format_reference(prefix: str, when: datetime, sequence: int) -> str:
    """
    사건 참조번호를 만듭니다.

    Args:
        prefix: 접두사 (예: EFIR)
        when: 생성 시각
        sequence: 저장소 시퀀스 값

    Returns:
        "EFIR-20250101-000042" 형식의 참조번호
    """
    return f"{prefix}-{when:%Y%m%d}-{sequence:06d}"


class IncidentLedger:
    """사건 접수 서비스"""

    def __init__(self, store, directory, notifier: Notifier, config: Optional[IncidentConfig] = None,
                 ranking: Optional[ResponderRanking] = None):
        """
        초기화합니다.

        Args:
            store: RecordStorePort 구현
            directory: AccountDirectoryPort 구현
            notifier: 커밋 이후 알림 훅
            config: 사건 설정
            ranking: 담당자 선택 전략 (기본: 첫 번째 일치)
        """
        self.store = store
        self.directory = directory
        self.notifier = notifier
        self.config = config or IncidentConfig()
        self.ranking = ranking or FirstMatchRanking()

    async def next_reference(self, now: Optional[datetime] = None) -> str:
        """저장소 시퀀스 기반의 고유 참조번호를 발급합니다."""
        seq = await self.store.next_sequence(REFERENCE_SEQUENCE)
        return format_reference(self.config.reference_prefix, now or utcnow(), seq)

    async def file_incident(self, reporter_id: str, type: str, title: str, description: str,
                            location: Position, severity: Optional[Severity] = None,
                            witnesses: Optional[Iterable[str]] = None,
                            evidence_refs: Optional[Iterable[str]] = None) -> Tuple[Incident, Alert]:
        """
        사건을 접수하고 연결 경보를 생성합니다.

        Args:
            reporter_id: 신고한 여행자 ID
            type: 사건 유형
            title: 제목
            description: 상세 설명
            location: 발생 위치
            severity: 심각도 (기본 medium)
            witnesses: 목격자 목록
            evidence_refs: 증거 참조 목록

        Returns:
            (사건, 연결 경보)

        Raises:
            ValidationError: 필수 필드 누락
            NotFoundError: 신고자 프로필이 없을 때
        """
        if not (type and title and description and location):
            raise ValidationError("type, title, description and location are required")

        await self.directory.resolve_agent(reporter_id)

        now = utcnow()
        severity = severity or self.config.default_severity
        incident = build(
            Incident,
            reporter_id=reporter_id,
            reference_number=await self.next_reference(now),
            type=type,
            title=title,
            description=description,
            location=location,
            severity=severity,
            witnesses=list(witnesses or []),
            evidence_refs=list(evidence_refs or []),
            created_at=now,
        )
        alert = build(
            Alert,
            kind=AlertKind.INCIDENT,
            subject_id=reporter_id,
            location=location,
            severity=incident.severity,
            status=AlertStatus.ACTIVE,
            message=f"Incident reported: {title}",
            description=description,
            incident_id=incident.id,
            created_at=now,
            updated_at=now,
        )
        incident = incident.model_copy(update={"alert_id": alert.id})
        incident, alert = await self.store.insert_incident_with_alert(incident, alert)
        metrics.alerts_created.labels(kind=alert.kind.value, severity=alert.severity).inc()
        log.info(f"사건 접수 ref:{incident.reference_number} id:{incident.id} alert:{alert.id}")

        incident = await self._assign(incident)
        metrics.incidents_filed.labels(
            severity=incident.severity,
            assigned="yes" if incident.assigned_responder else "no",
        ).inc()
        return incident, alert

    async def _assign(self, incident: Incident) -> Incident:
        """담당자를 배정합니다. 실패해도 사건은 미배정으로 유지됩니다."""
        try:
            candidates = await self.directory.on_duty_authorities(self.config.responder_departments)
            eligible = [a for a in candidates
                        if a.on_duty and a.department in self.config.responder_departments]
            responder = self.ranking.select(incident, eligible)
            if responder is None:
                log.info(f"배정 가능한 담당자 없음 ref:{incident.reference_number}")
                return incident
            incident = await self.store.update_incident(
                incident.model_copy(update={"assigned_responder": responder.id})
            )
        except Exception as e:
            log.error(f"담당자 배정 실패, 미배정 유지 ref:{incident.reference_number} error:{e}")
            return incident

        log.info(f"담당자 배정 ref:{incident.reference_number} responder:{responder.id}")
        payload = {
            "subject": f"SafeTrip incident {incident.reference_number} assigned",
            "text": (f"Incident {incident.reference_number} ({incident.severity}): {incident.title}. "
                     f"Location {incident.location.latitude:.6f}, {incident.location.longitude:.6f}."),
            "incident_id": incident.id,
            "reference_number": incident.reference_number,
        }
        await self.notifier.emit("sms", [responder.phone], payload, reason="incident_assigned")
        await self.notifier.emit("email", [responder.email], payload, reason="incident_assigned")
        return incident

    async def get(self, incident_id: str) -> Incident:
        return await self.store.get_incident(incident_id)

    async def get_by_reference(self, reference_number: str) -> Incident:
        return await self.store.get_incident_by_reference(reference_number)

