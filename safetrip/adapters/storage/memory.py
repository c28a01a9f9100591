"""
In-memory adapters for SafeTrip.

This module implements the record store and account directory
ports in process memory, for tests and single-process deployments.
"""

import asyncio
import itertools
import json
import os
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Tuple

from safetrip.common.geo import distance_meters
from safetrip.core.errors import NotFoundError, StaleRecordError, ValidationError
from safetrip.core.models import (
    Agent, AgentState, Alert, Authority, Incident, Position, Zone, build, utcnow,
)
from safetrip.observability.logging_setup import get_logger

log = get_logger("safetrip.memory")

_AGENT_STATE_FIELDS = {"status", "position", "safety_score", "location_sharing"}


class InMemoryRecordStore:
    """메모리 기반 레코드 저장소"""

    def __init__(self):
        self._lock = asyncio.Lock()
        self._zones: Dict[str, Zone] = {}
        self._alerts: Dict[str, Alert] = {}
        self._incidents: Dict[str, Incident] = {}
        self._references: Dict[str, str] = {}
        self._states: Dict[str, AgentState] = {}
        self._sequences: Dict[str, itertools.count] = {}

    # ---- 구역 ----

    async def get_zone(self, zone_id: str) -> Zone:
        zone = self._zones.get(zone_id)
        if zone is None:
            raise NotFoundError("zone", zone_id)
        return zone

    async def list_zones(self, *, kind: Optional[str] = None, region: Optional[str] = None,
                         active: Optional[bool] = None) -> List[Zone]:
        zones = [
            z for z in self._zones.values()
            if (kind is None or z.kind == kind)
            and (region is None or z.region == region)
            and (active is None or z.active == active)
        ]
        zones.sort(key=lambda z: z.created_at, reverse=True)
        return zones

    async def save_zone(self, zone: Zone) -> Zone:
        async with self._lock:
            self._zones[zone.id] = zone
        return zone

    async def delete_zone(self, zone_id: str) -> None:
        async with self._lock:
            if self._zones.pop(zone_id, None) is None:
                raise NotFoundError("zone", zone_id)

    # ---- 경보 ----

    async def get_alert(self, alert_id: str) -> Alert:
        alert = self._alerts.get(alert_id)
        if alert is None:
            raise NotFoundError("alert", alert_id)
        return alert

    async def insert_alert(self, alert: Alert) -> Alert:
        async with self._lock:
            self._alerts[alert.id] = alert
        return alert

    async def update_alert(self, alert: Alert, expected_version: int) -> Alert:
        async with self._lock:
            stored = self._alerts.get(alert.id)
            if stored is None:
                raise NotFoundError("alert", alert.id)
            if stored.version != expected_version:
                raise StaleRecordError("alert", alert.id, expected_version)
            saved = alert.model_copy(update={"version": expected_version + 1})
            self._alerts[alert.id] = saved
        return saved

    async def delete_alert(self, alert_id: str) -> None:
        async with self._lock:
            if self._alerts.pop(alert_id, None) is None:
                raise NotFoundError("alert", alert_id)

    async def list_alerts(self, *, subject_id: Optional[str] = None, kind: Optional[str] = None,
                          status: Optional[str] = None, severity: Optional[str] = None,
                          offset: int = 0, limit: int = 20) -> Tuple[List[Alert], int]:
        alerts = [
            a for a in self._alerts.values()
            if (subject_id is None or a.subject_id == subject_id)
            and (kind is None or a.kind.value == kind)
            and (status is None or a.status.value == status)
            and (severity is None or a.severity == severity)
        ]
        alerts.sort(key=lambda a: a.created_at, reverse=True)
        return alerts[offset:offset + limit], len(alerts)

    async def recent_alerts(self, center: Position, within_m: float, since: datetime,
                            kinds: Iterable[str]) -> List[Alert]:
        kinds = set(kinds)
        return [
            a for a in self._alerts.values()
            if a.kind.value in kinds
            and a.created_at >= since
            and distance_meters(center, a.location) <= within_m
        ]

    # ---- 사건 ----

    async def get_incident(self, incident_id: str) -> Incident:
        incident = self._incidents.get(incident_id)
        if incident is None:
            raise NotFoundError("incident", incident_id)
        return incident

    async def get_incident_by_reference(self, reference_number: str) -> Incident:
        incident_id = self._references.get(reference_number)
        if incident_id is None or incident_id not in self._incidents:
            raise NotFoundError("incident", reference_number)
        return self._incidents[incident_id]

    async def insert_incident_with_alert(self, incident: Incident, alert: Alert) -> Tuple[Incident, Alert]:
        async with self._lock:
            if incident.reference_number in self._references:
                raise StaleRecordError("incident", incident.reference_number, 0)
            self._incidents[incident.id] = incident
            self._references[incident.reference_number] = incident.id
            self._alerts[alert.id] = alert
        return incident, alert

    async def update_incident(self, incident: Incident) -> Incident:
        async with self._lock:
            stored = self._incidents.get(incident.id)
            if stored is None:
                raise NotFoundError("incident", incident.id)
            # 참조번호는 변경 불가
            incident = incident.model_copy(update={"reference_number": stored.reference_number})
            self._incidents[incident.id] = incident
        return incident

    async def next_sequence(self, name: str) -> int:
        async with self._lock:
            counter = self._sequences.setdefault(name, itertools.count(1))
            return next(counter)

    # ---- 여행자 상태 ----

    async def get_agent_state(self, agent_id: str) -> Optional[AgentState]:
        return self._states.get(agent_id)

    async def update_agent_state(self, agent_id: str, **changes) -> AgentState:
        unknown = set(changes) - _AGENT_STATE_FIELDS
        if unknown:
            raise ValidationError(f"unknown agent state fields: {sorted(unknown)}")
        async with self._lock:
            state = self._states.get(agent_id) or AgentState(agent_id=agent_id)
            changes["version"] = state.version + 1
            changes["updated_at"] = utcnow()
            state = state.model_copy(update=changes)
            self._states[agent_id] = state
        return state


class InMemoryAccountDirectory:
    """메모리 기반 계정 디렉터리"""

    def __init__(self, agents: Iterable[Agent] = (), authorities: Iterable[Authority] = ()):
        self._agents: Dict[str, Agent] = {a.id: a for a in agents}
        self._authorities: Dict[str, Authority] = {a.id: a for a in authorities}

    @classmethod
    def from_file(cls, path: str) -> "InMemoryAccountDirectory":
        """
        JSON 시드 파일에서 디렉터리를 만듭니다.

        파일 형식: {"agents": [...], "authorities": [...]}. 파일이 없으면 빈 디렉터리.

        Raises:
            ValidationError: 파일 형식 또는 레코드가 유효하지 않을 때
        """
        if not os.path.exists(path):
            log.warning(f"계정 파일 없음, 빈 디렉터리 사용: {path}")
            return cls()
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            raise ValidationError(f"invalid accounts file {path}: {e}") from e
        agents = [build(Agent, **item) for item in data.get("agents", [])]
        authorities = [build(Authority, **item) for item in data.get("authorities", [])]
        log.info(f"계정 디렉터리 적재: agents:{len(agents)} authorities:{len(authorities)}")
        return cls(agents, authorities)

    def add_agent(self, agent: Agent) -> None:
        self._agents[agent.id] = agent

    def add_authority(self, authority: Authority) -> None:
        self._authorities[authority.id] = authority

    def remove(self, user_id: str) -> None:
        self._agents.pop(user_id, None)
        self._authorities.pop(user_id, None)

    async def resolve_agent(self, user_id: str) -> Agent:
        agent = self._agents.get(user_id)
        if agent is None:
            raise NotFoundError("agent", user_id)
        return agent

    async def resolve_authority(self, user_id: str) -> Authority:
        authority = self._authorities.get(user_id)
        if authority is None:
            raise NotFoundError("authority", user_id)
        return authority

    async def on_duty_authorities(self, departments: Optional[Iterable[str]] = None) -> List[Authority]:
        wanted = set(departments) if departments is not None else None
        return [
            a for a in self._authorities.values()
            if a.on_duty and (wanted is None or a.department in wanted)
        ]
