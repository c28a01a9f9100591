"""
Alert lifecycle for SafeTrip.

This module implements the forward-only alert state machine,
role-gated status transitions and the SOS side effects on the
subject agent.
"""

from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from safetrip.common.locks import KeyedLock
from safetrip.observability import metrics
from safetrip.observability.logging_setup import get_logger
from safetrip.settings import AlertConfig
from .errors import InvalidTransitionError, NotFoundError, StaleRecordError, ValidationError
from .models import (
    Agent, AgentStatus, Alert, AlertKind, AlertStatus, Position, Severity,
    SEVERITY_ORDER, build, utcnow,
)
from .roles import Actor, Capability, require

log = get_logger("safetrip.lifecycle")

# 허용된 전이 (역방향 없음)
TRANSITIONS: Mapping[AlertStatus, frozenset] = {
    AlertStatus.ACTIVE: frozenset({AlertStatus.ACKNOWLEDGED, AlertStatus.RESPONDING}),
    AlertStatus.ACKNOWLEDGED: frozenset({AlertStatus.RESPONDING, AlertStatus.RESOLVED}),
    AlertStatus.RESPONDING: frozenset({AlertStatus.RESOLVED}),
    AlertStatus.RESOLVED: frozenset({AlertStatus.CLOSED}),
    AlertStatus.CLOSED: frozenset(),
}


def can_transition(current: AlertStatus, requested: AlertStatus) -> bool:
    return requested in TRANSITIONS.get(current, frozenset())


def check_transition(current: AlertStatus, requested: AlertStatus) -> None:
    """
    전이가 허용되는지 확인합니다.

    Raises:
        InvalidTransitionError: 허용되지 않은 전이
    """
    if not can_transition(current, requested):
        raise InvalidTransitionError(current.value, requested.value)


class Notifier:
    """커밋 이후 알림 발송 훅

    발송 실패는 기록만 하고 호출자에게 전파하지 않습니다.
    """

    def __init__(self, dispatcher, enabled: bool = True):
        self.dispatcher = dispatcher
        self.enabled = enabled

    async def emit(self, channel: str, recipients: Sequence[Optional[str]], payload: Dict[str, Any],
                   *, reason: str) -> bool:
        """
        알림을 발송 큐에 넣습니다.

        Args:
            channel: "sms" 또는 "email"
            recipients: 수신자 목록 (빈 값은 제외)
            payload: 메시지 본문
            reason: 로그용 발송 사유

        Returns:
            접수 성공 여부
        """
        targets = [r for r in recipients if r]
        if not self.enabled or self.dispatcher is None or not targets:
            return False
        try:
            await self.dispatcher.notify(channel, targets, payload)
            return True
        except Exception as e:
            metrics.notifications_failed.labels(channel=channel, stage="enqueue").inc()
            log.error(f"알림 접수 실패 reason:{reason} channel:{channel} error:{e}")
            return False


class AlertLifecycle:
    """경보 생성/상태 전이 서비스"""

    def __init__(self, store, directory, notifier: Notifier, config: Optional[AlertConfig] = None,
                 responder_departments: Optional[Sequence[str]] = None):
        """
        초기화합니다.

        Args:
            store: RecordStorePort 구현
            directory: AccountDirectoryPort 구현
            notifier: 커밋 이후 알림 훅
            config: 경보 설정
            responder_departments: SOS 알림 대상 부서 (None이면 근무 중인 전체)
        """
        self.store = store
        self.directory = directory
        self.notifier = notifier
        self.config = config or AlertConfig()
        self.responder_departments = responder_departments
        self._locks = KeyedLock()

    # ---- 생성 ----

    async def create(self, kind: AlertKind, subject_id: Optional[str], location: Position,
                     severity: Severity, message: str, description: Optional[str] = None,
                     incident_id: Optional[str] = None) -> Alert:
        """
        경보를 생성합니다. 항상 active 상태로 시작합니다.

        SOS 경보는 여행자 상태를 emergency로 바꾸고, 근무 중인 담당자와
        여행자의 비상 연락처에 생성당 한 번 알립니다.

        Args:
            kind: 경보 종류
            subject_id: 대상 여행자 ID
            location: 발생 위치
            severity: 심각도
            message: 요약 메시지
            description: 상세 설명
            incident_id: 연결된 사건 ID

        Returns:
            저장된 경보

        Raises:
            ValidationError: 필수 필드 누락
            NotFoundError: SOS 대상 여행자가 없을 때
        """
        kind = AlertKind(kind)
        if not message:
            raise ValidationError("alert message is required")
        if kind is AlertKind.SOS and not subject_id:
            raise ValidationError("sos alert requires a subject")

        agent = None
        if kind is AlertKind.SOS:
            agent = await self.directory.resolve_agent(subject_id)

        alert = build(
            Alert,
            kind=kind,
            subject_id=subject_id,
            location=location,
            severity=severity,
            status=AlertStatus.ACTIVE,
            message=message,
            description=description,
            incident_id=incident_id,
        )
        alert = await self.store.insert_alert(alert)

        if kind is AlertKind.SOS:
            try:
                await self.store.update_agent_state(subject_id, status=AgentStatus.EMERGENCY)
            except Exception:
                await self._discard(alert)
                raise

        metrics.alerts_created.labels(kind=kind.value, severity=alert.severity).inc()
        log.info(f"경보 생성 id:{alert.id} kind:{kind.value} severity:{alert.severity} subject:{subject_id}")

        if kind is AlertKind.SOS:
            log.warning(f"SOS 발생 agent:{subject_id} alert:{alert.id}")
            await self._notify_sos(alert, agent)

        return alert

    async def _discard(self, alert: Alert) -> None:
        """상태 반영에 실패한 SOS 경보를 되돌립니다."""
        try:
            await self.store.delete_alert(alert.id)
            log.warning(f"여행자 상태 갱신 실패, SOS 경보 취소 alert:{alert.id}")
        except Exception as e:
            log.error(f"SOS 경보 취소 실패 alert:{alert.id} error:{e}")

    async def _notify_sos(self, alert: Alert, agent: Agent) -> None:
        try:
            authorities = await self.directory.on_duty_authorities(self.responder_departments)
        except Exception as e:
            log.error(f"근무 중 담당자 조회 실패, 담당자 알림 생략 alert:{alert.id} error:{e}")
            authorities = []

        where = f"{alert.location.latitude:.6f}, {alert.location.longitude:.6f}"
        text = (f"EMERGENCY ALERT: {agent.name} has activated SOS at location {where}. "
                f"Time: {alert.created_at.isoformat()}. Authorities notified.")
        payload = {
            "subject": "SafeTrip Emergency Alert - SOS Activated",
            "text": text,
            "alert_id": alert.id,
            "kind": alert.kind.value,
            "severity": alert.severity,
            "location": {"lat": alert.location.latitude, "lng": alert.location.longitude},
        }

        await self.notifier.emit("sms", [a.phone for a in authorities], payload, reason="sos_authorities")
        await self.notifier.emit("email", [a.email for a in authorities], payload, reason="sos_authorities")

        contact = agent.emergency_contact
        if contact is not None:
            await self.notifier.emit("sms", [contact.phone], payload, reason="sos_contact")
            await self.notifier.emit("email", [contact.email], payload, reason="sos_contact")
        else:
            log.info(f"비상 연락처 없음, 연락처 알림 생략 agent:{agent.id}")

    # ---- 전이 ----

    async def transition(self, alert_id: str, new_status: AlertStatus, actor: Actor,
                         response_notes: Optional[str] = None) -> Alert:
        """
        경보 상태를 전이합니다.

        저장된 상태를 다시 읽어 검증한 뒤 버전 검사와 함께 기록합니다.
        버전 충돌 시 다시 읽어 재검증하며, 더 이상 도달할 수 없는 상태면
        InvalidTransitionError를 올립니다.

        Args:
            alert_id: 경보 ID
            new_status: 목표 상태
            actor: 요청 주체 (authority 역할 필요)
            response_notes: 대응 메모 (description을 덮어씀)

        Returns:
            갱신된 경보

        Raises:
            PermissionDeniedError: 권한 없는 역할
            InvalidTransitionError: 허용되지 않은 전이
            NotFoundError: 경보 또는 담당자 프로필이 없을 때
        """
        require(actor, Capability.TRANSITION_ALERTS)
        try:
            new_status = AlertStatus(new_status)
        except ValueError:
            raise ValidationError(f"unknown alert status '{new_status}'") from None

        authority = await self.directory.resolve_authority(actor.user_id)

        async with self._locks.hold(alert_id):
            attempts = 0
            while True:
                attempts += 1
                current = await self.store.get_alert(alert_id)
                try:
                    check_transition(current.status, new_status)
                except InvalidTransitionError:
                    metrics.alert_transitions_rejected.labels(reason="edge").inc()
                    raise

                changes: Dict[str, Any] = {
                    "status": new_status,
                    "authority_id": authority.id,
                    "updated_at": utcnow(),
                }
                if response_notes:
                    changes["description"] = response_notes
                updated = current.model_copy(update=changes)
                try:
                    saved = await self.store.update_alert(updated, expected_version=current.version)
                    break
                except StaleRecordError:
                    metrics.alert_transitions_rejected.labels(reason="conflict").inc()
                    if attempts > self.config.transition_conflict_retries:
                        raise
                    log.info(f"경보 버전 충돌, 재검증 alert:{alert_id} attempt:{attempts}")

        metrics.alert_transitions.labels(from_status=current.status.value, to_status=new_status.value).inc()
        log.info(f"경보 상태 전이 id:{alert_id} {current.status.value} -> {new_status.value} by:{authority.id}")

        if new_status is AlertStatus.RESOLVED and saved.kind is AlertKind.SOS and saved.subject_id:
            await self.store.update_agent_state(saved.subject_id, status=AgentStatus.ACTIVE)
            log.info(f"SOS 해제, 여행자 상태 복귀 agent:{saved.subject_id}")

        if self.config.notify_on_transition:
            await self._notify_transition(saved)
        return saved

    async def _notify_transition(self, alert: Alert) -> None:
        if not alert.subject_id:
            return
        try:
            agent = await self.directory.resolve_agent(alert.subject_id)
        except NotFoundError:
            log.info(f"대상 여행자 없음, 상태 알림 생략 alert:{alert.id}")
            return
        except Exception as e:
            log.error(f"대상 여행자 조회 실패, 상태 알림 생략 alert:{alert.id} error:{e}")
            return
        payload = {
            "subject": f"SafeTrip alert {alert.status.value}",
            "text": f"Your {alert.kind.value} alert is now {alert.status.value}.",
            "alert_id": alert.id,
            "status": alert.status.value,
        }
        await self.notifier.emit("sms", [agent.phone], payload, reason="transition")

    # ---- 조회/삭제 ----

    async def get(self, alert_id: str, actor: Optional[Actor] = None) -> Alert:
        """
        경보를 조회합니다. 여행자는 자신의 경보만 볼 수 있습니다.

        Raises:
            NotFoundError: 경보가 없을 때
            PermissionDeniedError: 다른 여행자의 경보
        """
        alert = await self.store.get_alert(alert_id)
        if actor is not None and alert.subject_id != actor.user_id:
            require(actor, Capability.VIEW_ALL_ALERTS)
        return alert

    async def list_for(self, actor: Actor, *, kind: Optional[str] = None, status: Optional[str] = None,
                       severity: Optional[str] = None, page: int = 1,
                       limit: int = 20) -> Tuple[List[Alert], int]:
        """
        주체가 볼 수 있는 경보 목록을 조회합니다.

        Args:
            actor: 요청 주체
            kind: 종류 필터
            status: 상태 필터
            severity: 심각도 필터
            page: 1부터 시작하는 페이지
            limit: 페이지 크기

        Returns:
            (경보 목록, 전체 개수)
        """
        if page < 1 or limit < 1:
            raise ValidationError("page and limit must be positive")
        if severity is not None and severity not in SEVERITY_ORDER:
            raise ValidationError(f"unknown severity '{severity}'")
        limit = min(limit, self.config.page_limit_max)
        subject_id = None if actor.can(Capability.VIEW_ALL_ALERTS) else actor.user_id
        return await self.store.list_alerts(
            subject_id=subject_id,
            kind=kind,
            status=status,
            severity=severity,
            offset=(page - 1) * limit,
            limit=limit,
        )

    async def delete(self, alert_id: str, actor: Actor) -> None:
        """
        경보를 삭제합니다 (authority 전용).

        Raises:
            PermissionDeniedError: 권한 없는 역할
            NotFoundError: 경보가 없을 때
        """
        require(actor, Capability.DELETE_ALERTS)
        async with self._locks.hold(alert_id):
            await self.store.delete_alert(alert_id)
        log.info(f"경보 삭제 id:{alert_id} by:{actor.user_id}")
