"""
Safety orchestrator for SafeTrip.

This module implements the request-level use cases: location
updates with scoring and geofence entry alerts, SOS activation,
incident reporting, alert status changes and zone management.
"""

from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple

from pydantic import BaseModel, Field

from safetrip.core.errors import ValidationError
from safetrip.core.incidents import IncidentLedger, ResponderRanking
from safetrip.core.lifecycle import AlertLifecycle, Notifier
from safetrip.core.models import (
    Alert, AlertKind, AlertStatus, Incident, Position, Severity, Zone, build,
    make_position, utcnow,
)
from safetrip.core.roles import Actor, Capability, Role, require
from safetrip.core.scoring import ScoreEngine
from safetrip.core.zones import ZoneIndex
from safetrip.observability import metrics
from safetrip.observability.logging_setup import get_logger
from safetrip.settings import Settings

log = get_logger("safetrip.orchestrator")

# 구역 수정 시 변경 가능한 필드
ZONE_MUTABLE_FIELDS = frozenset({
    "name", "kind", "radius_m", "region", "active", "description", "latitude", "longitude",
})

EMERGENCY_CONTACTS: Tuple[Dict[str, str], ...] = (
    {"name": "Police", "number": "100", "type": "police"},
    {"name": "Medical Emergency", "number": "108", "type": "medical"},
    {"name": "Fire Service", "number": "101", "type": "fire"},
    {"name": "Tourist Helpline", "number": "1363", "type": "tourist"},
    {"name": "Women Helpline", "number": "1091", "type": "women"},
    {"name": "Child Helpline", "number": "1098", "type": "child"},
)


SAFETY_TIPS: Tuple[Dict[str, Any], ...] = (
    {"id": 1, "title": "Stay in Well-lit Areas", "category": "general", "priority": "high",
     "description": "Avoid dark alleys and isolated places, especially during night time."},
    {"id": 2, "title": "Keep Emergency Contacts Ready", "category": "emergency", "priority": "high",
     "description": "Always have local emergency numbers and embassy contacts saved."},
    {"id": 3, "title": "Inform Your Itinerary", "category": "planning", "priority": "medium",
     "description": "Share your travel plans with family and local authorities."},
    {"id": 4, "title": "Carry Identification", "category": "documents", "priority": "high",
     "description": "Always carry valid ID and keep copies in separate places."},
    {"id": 5, "title": "Use Authorized Transport", "category": "transport", "priority": "medium",
     "description": "Prefer licensed taxis and avoid hitchhiking."},
    {"id": 6, "title": "Trust Your Instincts", "category": "general", "priority": "high",
     "description": "If something feels wrong, remove yourself from the situation."},
    {"id": 7, "title": "Keep Cash in Multiple Places", "category": "money", "priority": "medium",
     "description": "Don't keep all money in one place. Use multiple pockets."},
    {"id": 8, "title": "Learn Basic Local Phrases", "category": "communication", "priority": "low",
     "description": "Know how to ask for help in the local language."},
)

class LocationUpdate(BaseModel):
    """위치 갱신 결과"""
    position: Position
    safety_score: int
    in_risk_zone: bool
    entered_zones: List[str] = Field(default_factory=list)


class ZoneCheck(BaseModel):
    """위치의 구역 포함 여부"""
    in_risk_zone: bool
    zones: List[Dict[str, Any]] = Field(default_factory=list)


class SafetyOrchestrator:
    """SafeTrip 요청 처리 오케스트레이터"""

    def __init__(self,
                 store,
                 directory,
                 dispatcher,
                 settings: Optional[Settings] = None,
                 *,
                 zones: Optional[ZoneIndex] = None,
                 ranking: Optional[ResponderRanking] = None):
        """
        초기화합니다.

        Args:
            store: RecordStorePort 구현
            directory: AccountDirectoryPort 구현
            dispatcher: NotificationDispatchPort 구현
            settings: 전체 설정
            zones: 구역 인덱스 (None이면 새로 생성, start()에서 적재)
            ranking: 사건 담당자 선택 전략
        """
        self.settings = settings or Settings()
        self.store = store
        self.directory = directory
        self.zones = zones if zones is not None else ZoneIndex()
        self.notifier = Notifier(dispatcher, enabled=self.settings.notification.enabled)
        self.scorer = ScoreEngine(self.zones, store, self.settings.scoring)
        self.alerts = AlertLifecycle(
            store, directory, self.notifier, self.settings.alerts,
            responder_departments=self.settings.incidents.responder_departments,
        )
        self.incidents = IncidentLedger(
            store, directory, self.notifier, self.settings.incidents, ranking=ranking,
        )
        log.info("오케스트레이터 초기화됨")

    async def start(self) -> None:
        """저장소에서 활성 구역을 적재합니다."""
        await self.zones.load(self.store)
        log.info("SafeTrip 오케스트레이터 시작됨")

    # ---- 위치/점수 ----

    async def update_location(self, agent_id: str, latitude: Any, longitude: Any,
                              now: Optional[datetime] = None) -> LocationUpdate:
        """
        여행자 위치를 갱신하고 안전 점수를 다시 계산합니다.

        점수 계산 실패는 이전 점수로 대체되며 갱신을 막지 않습니다.
        위험 구역에 새로 진입하면 비상 연락처에 SMS를 보냅니다.

        Args:
            agent_id: 여행자 ID
            latitude: 위도
            longitude: 경도
            now: 기준 시각 (None이면 현재 UTC)

        Returns:
            LocationUpdate

        Raises:
            ValidationError: 좌표 누락 또는 범위 초과
            NotFoundError: 여행자 프로필이 없을 때
        """
        now = now or utcnow()
        position = make_position(latitude, longitude, timestamp=now)
        agent = await self.directory.resolve_agent(agent_id)

        state = await self.store.get_agent_state(agent_id)
        previous_position = state.position if state else None
        previous_score = state.safety_score if state else None

        score = await self.scorer.score(position, now, previous=previous_score)
        await self.store.update_agent_state(agent_id, position=position, safety_score=score)
        metrics.location_updates.inc()

        inside = [z for z, _ in self.zones.containing_with_distance(position) if z.is_risk]
        before = set()
        if previous_position is not None:
            before = {z.id for z in self.zones.containing_zones(previous_position) if z.is_risk}
        entered = [z for z in inside if z.id not in before]

        log.debug(f"위치 갱신 agent:{agent_id} score:{score} risk:{bool(inside)}")

        if entered and self.settings.notification.geofence_entry_alerts:
            await self._notify_geofence_entry(agent, entered, position)

        return LocationUpdate(
            position=position,
            safety_score=score,
            in_risk_zone=bool(inside),
            entered_zones=[z.id for z in entered],
        )

    async def _notify_geofence_entry(self, agent, entered: List[Zone], position: Position) -> None:
        contact = agent.emergency_contact
        if contact is None or not contact.phone:
            log.info(f"비상 연락처 없음, 진입 알림 생략 agent:{agent.id}")
            return
        for zone in entered:
            log.warning(f"위험 구역 진입 agent:{agent.id} zone:{zone.id}")
            payload = {
                "subject": "SafeTrip geofence alert",
                "text": (f"SafeTrip Alert: {agent.name} has entered a {zone.kind} zone: "
                         f"{zone.name}. Please check on them."),
                "zone_id": zone.id,
                "location": {"lat": position.latitude, "lng": position.longitude},
            }
            await self.notifier.emit("sms", [contact.phone], payload, reason="geofence_entry")

    async def get_safety_score(self, agent_id: str) -> int:
        """
        캐시된 안전 점수를 반환합니다 (기록이 없으면 기본 점수).

        Raises:
            NotFoundError: 여행자 프로필이 없을 때
        """
        await self.directory.resolve_agent(agent_id)
        state = await self.store.get_agent_state(agent_id)
        if state is None or state.safety_score is None:
            return self.settings.scoring.base_score
        return state.safety_score

    async def set_location_sharing(self, agent_id: str, enabled: bool) -> bool:
        await self.directory.resolve_agent(agent_id)
        state = await self.store.update_agent_state(agent_id, location_sharing=bool(enabled))
        log.info(f"위치 공유 설정 agent:{agent_id} enabled:{state.location_sharing}")
        return state.location_sharing

    # ---- 긴급 상황 ----

    async def activate_sos(self, agent_id: str, latitude: Any, longitude: Any,
                           message: Optional[str] = None, severity: Optional[Severity] = None,
                           *, actor: Optional[Actor] = None) -> Alert:
        """
        SOS 경보를 생성합니다.

        Args:
            agent_id: 여행자 ID
            latitude: 위도
            longitude: 경도
            message: 메시지 (기본 "Emergency SOS activated")
            severity: 심각도 (기본 critical)
            actor: 요청 주체 (주어지면 RAISE_SOS 권한 확인)

        Returns:
            생성된 SOS 경보
        """
        if actor is not None:
            require(actor, Capability.RAISE_SOS)
        location = make_position(latitude, longitude)
        return await self.alerts.create(
            AlertKind.SOS,
            agent_id,
            location,
            severity or self.settings.alerts.sos_default_severity,
            message or "Emergency SOS activated",
        )

    async def report_incident(self, reporter_id: str, *, type: str, title: str, description: str,
                              latitude: Any, longitude: Any, address: Optional[str] = None,
                              severity: Optional[Severity] = None,
                              witnesses: Optional[Iterable[str]] = None,
                              evidence_refs: Optional[Iterable[str]] = None,
                              actor: Optional[Actor] = None) -> Tuple[Incident, Alert]:
        """
        사건을 접수합니다.

        Returns:
            (사건, 연결 경보)
        """
        if actor is not None:
            require(actor, Capability.REPORT_INCIDENTS)
        location = make_position(latitude, longitude, address=address)
        return await self.incidents.file_incident(
            reporter_id, type, title, description, location,
            severity=severity, witnesses=witnesses, evidence_refs=evidence_refs,
        )

    async def get_incident(self, incident_id: str) -> Incident:
        return await self.incidents.get(incident_id)

    async def get_incident_by_reference(self, reference_number: str) -> Incident:
        return await self.incidents.get_by_reference(reference_number)

    # ---- 경보 ----

    async def create_alert(self, actor: Actor, *, message: str, latitude: Any, longitude: Any,
                           kind: str = AlertKind.MANUAL.value, description: Optional[str] = None,
                           severity: Optional[Severity] = None) -> Alert:
        """
        요청 주체가 직접 경보를 올립니다.

        여행자가 올린 경보는 본인을 대상으로 하고, 담당자가 올린 경보는
        대상 없이 저장됩니다. 사건 경보는 report_incident로만 생성됩니다.

        Raises:
            PermissionDeniedError: RAISE_ALERTS (SOS는 RAISE_SOS) 권한 없음
            ValidationError: 알 수 없는 종류, 사건 종류, 잘못된 좌표
        """
        require(actor, Capability.RAISE_ALERTS)
        try:
            kind = AlertKind(kind)
        except ValueError:
            raise ValidationError(f"unknown alert kind '{kind}'") from None
        if kind is AlertKind.INCIDENT:
            raise ValidationError("incident alerts are created by report_incident")
        if kind is AlertKind.SOS:
            require(actor, Capability.RAISE_SOS)
            default_severity = self.settings.alerts.sos_default_severity
        else:
            default_severity = self.settings.alerts.manual_default_severity

        location = make_position(latitude, longitude)
        subject_id = actor.user_id if actor.role is Role.TOURIST else None
        return await self.alerts.create(
            kind, subject_id, location, severity or default_severity, message, description,
        )

    async def update_alert_status(self, alert_id: str, status: AlertStatus, actor: Actor,
                                  response_notes: Optional[str] = None) -> Alert:
        return await self.alerts.transition(alert_id, status, actor, response_notes)

    async def get_alert(self, alert_id: str, actor: Optional[Actor] = None) -> Alert:
        return await self.alerts.get(alert_id, actor)

    async def list_alerts(self, actor: Actor, **filters) -> Tuple[List[Alert], int]:
        return await self.alerts.list_for(actor, **filters)

    async def delete_alert(self, alert_id: str, actor: Actor) -> None:
        await self.alerts.delete(alert_id, actor)

    # ---- 구역 ----

    async def create_zone(self, actor: Actor, *, name: str, kind: str, latitude: Any, longitude: Any,
                          radius_m: float, region: str, description: Optional[str] = None,
                          active: bool = True) -> Zone:
        """
        구역을 생성합니다 (MANAGE_ZONES 권한 필요).

        Raises:
            PermissionDeniedError: 권한 없는 역할
            ValidationError: 반경/좌표/필수 필드 오류
        """
        require(actor, Capability.MANAGE_ZONES)
        zone = build(
            Zone,
            name=name,
            kind=kind,
            center=make_position(latitude, longitude),
            radius_m=radius_m,
            region=region,
            description=description,
            active=active,
            created_by=actor.user_id,
        )
        zone = await self.store.save_zone(zone)
        self.zones.upsert(zone)
        log.info(f"구역 생성 id:{zone.id} kind:{zone.kind} radius:{zone.radius_m} by:{actor.user_id}")
        return zone

    async def update_zone(self, actor: Actor, zone_id: str, **changes) -> Zone:
        """
        구역을 수정합니다. latitude/longitude가 주어지면 중심을 옮깁니다.

        Raises:
            PermissionDeniedError: 권한 없는 역할
            ValidationError: 알 수 없는 필드 또는 잘못된 값
            NotFoundError: 구역이 없을 때
        """
        require(actor, Capability.MANAGE_ZONES)
        unknown = set(changes) - ZONE_MUTABLE_FIELDS
        if unknown:
            raise ValidationError(f"cannot update zone fields: {', '.join(sorted(unknown))}")

        current = await self.store.get_zone(zone_id)
        data = current.model_dump()
        lat = changes.pop("latitude", None)
        lng = changes.pop("longitude", None)
        if lat is not None or lng is not None:
            data["center"] = make_position(
                lat if lat is not None else current.center.latitude,
                lng if lng is not None else current.center.longitude,
            )
        data.update({k: v for k, v in changes.items() if v is not None})
        data["updated_at"] = utcnow()
        zone = build(Zone, **data)

        zone = await self.store.save_zone(zone)
        self.zones.upsert(zone)
        log.info(f"구역 수정 id:{zone.id} by:{actor.user_id}")
        return zone

    async def delete_zone(self, actor: Actor, zone_id: str) -> None:
        require(actor, Capability.MANAGE_ZONES)
        await self.store.delete_zone(zone_id)
        self.zones.remove(zone_id)
        log.info(f"구역 삭제 id:{zone_id} by:{actor.user_id}")

    async def get_zone(self, zone_id: str) -> Zone:
        return await self.store.get_zone(zone_id)

    async def list_zones(self, *, kind: Optional[str] = None, region: Optional[str] = None,
                         active: Optional[bool] = True) -> List[Zone]:
        return await self.store.list_zones(kind=kind, region=region, active=active)

    def check_location(self, latitude: Any, longitude: Any) -> ZoneCheck:
        """
        위치가 포함된 활성 구역을 확인합니다 (경계 포함).

        Returns:
            ZoneCheck (구역 정보와 중심까지 거리, 가까운 순)
        """
        p = make_position(latitude, longitude)
        hits = self.zones.containing_with_distance(p)
        return ZoneCheck(
            in_risk_zone=any(z.is_risk for z, _ in hits),
            zones=[{"id": z.id, "name": z.name, "kind": z.kind, "distance_m": round(d, 1)}
                   for z, d in hits],
        )

    def nearby_zones(self, latitude: Any, longitude: Any,
                     radius_m: Optional[float] = None) -> List[Tuple[Zone, float]]:
        """중심이 반경 안에 있는 활성 구역을 거리순으로 반환합니다."""
        p = make_position(latitude, longitude)
        if radius_m is None:
            radius_m = self.settings.zones.nearby_default_radius_m
        return self.zones.nearby_zones(p, radius_m)

    @staticmethod
    def emergency_contacts() -> List[Dict[str, str]]:
        return [dict(c) for c in EMERGENCY_CONTACTS]

    @staticmethod
    def safety_tips(category: Optional[str] = None) -> List[Dict[str, Any]]:
        return [dict(t) for t in SAFETY_TIPS if category is None or t["category"] == category]
