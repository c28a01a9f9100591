"""
Record store port interface.

This module defines the protocol for persisting zones, alerts,
incidents and agent state, plus the range/proximity query
primitives used by scoring.
"""

from datetime import datetime
from typing import Iterable, List, Optional, Protocol, Tuple
from safetrip.core.models import AgentState, Alert, Incident, Position, Zone

class RecordStorePort(Protocol):
    """레코드 저장소 포트 인터페이스"""
    
    # ---- 구역 ----
    async def get_zone(self, zone_id: str) -> Zone:
        """구역을 조회합니다. 없으면 NotFoundError."""
        ...
    
    async def list_zones(self, *, kind: Optional[str] = None, region: Optional[str] = None,
                         active: Optional[bool] = None) -> List[Zone]:
        """조건에 맞는 구역을 최신 생성순으로 조회합니다."""
        ...
    
    async def save_zone(self, zone: Zone) -> Zone:
        """구역을 생성하거나 갱신합니다."""
        ...
    
    async def delete_zone(self, zone_id: str) -> None:
        """구역을 삭제합니다. 없으면 NotFoundError."""
        ...
    
    # ---- 경보 ----
    async def get_alert(self, alert_id: str) -> Alert:
        """경보를 조회합니다. 없으면 NotFoundError."""
        ...
    
    async def insert_alert(self, alert: Alert) -> Alert:
        """새 경보를 저장합니다."""
        ...
    
    async def update_alert(self, alert: Alert, expected_version: int) -> Alert:
        """
        경보를 갱신합니다 (낙관적 버전 검사).
        
        Args:
            alert: 새 상태의 경보
            expected_version: 읽었던 시점의 버전
            
        Returns:
            버전이 증가된 경보
            
        Raises:
            StaleRecordError: 저장된 버전이 다를 때
            NotFoundError: 경보가 삭제되었을 때
        """
        ...
    
    async def delete_alert(self, alert_id: str) -> None:
        """경보를 삭제합니다. 없으면 NotFoundError."""
        ...
    
    async def list_alerts(self, *, subject_id: Optional[str] = None, kind: Optional[str] = None,
                          status: Optional[str] = None, severity: Optional[str] = None,
                          offset: int = 0, limit: int = 20) -> Tuple[List[Alert], int]:
        """조건에 맞는 경보 페이지와 전체 개수를 최신순으로 반환합니다."""
        ...
    
    async def recent_alerts(self, center: Position, within_m: float, since: datetime,
                            kinds: Iterable[str]) -> List[Alert]:
        """중심점 반경 내에서 since 이후 생성된 경보를 조회합니다."""
        ...
    
    # ---- 사건 ----
    async def get_incident(self, incident_id: str) -> Incident:
        """사건을 조회합니다. 없으면 NotFoundError."""
        ...
    
    async def get_incident_by_reference(self, reference_number: str) -> Incident:
        """참조번호로 사건을 조회합니다. 없으면 NotFoundError."""
        ...
    
    async def insert_incident_with_alert(self, incident: Incident, alert: Alert) -> Tuple[Incident, Alert]:
        """사건과 연결 경보를 하나의 단위로 저장합니다."""
        ...
    
    async def update_incident(self, incident: Incident) -> Incident:
        """사건을 갱신합니다 (참조번호는 변경 불가)."""
        ...
    
    async def next_sequence(self, name: str) -> int:
        """이름별 단조 증가 시퀀스의 다음 값을 반환합니다."""
        ...
    
    # ---- 여행자 상태 ----
    async def get_agent_state(self, agent_id: str) -> Optional[AgentState]:
        """여행자 상태를 조회합니다. 없으면 None."""
        ...
    
    async def update_agent_state(self, agent_id: str, **changes) -> AgentState:
        """
        여행자 상태의 일부 필드를 원자적으로 갱신합니다 (없으면 생성).

        위치는 마지막 쓰기 우선이며, 다른 필드의 동시 갱신을 덮어쓰지 않습니다.

        Args:
            agent_id: 여행자 ID
            **changes: status, position, safety_score, location_sharing

        Returns:
            갱신된 상태
        """
        ...
