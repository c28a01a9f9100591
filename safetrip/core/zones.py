"""
Zone index for SafeTrip.

This module holds the active geofence zones and answers
containment and proximity queries against them.
"""

import threading
from types import MappingProxyType
from typing import Iterable, List, Mapping, Optional, Set, Tuple

from safetrip.common.geo import distance_meters, validate_coordinates
from safetrip.observability import metrics
from safetrip.observability.logging_setup import get_logger
from .errors import NotFoundError, ValidationError
from .models import Position, Zone

log = get_logger("safetrip.zones")

_EMPTY: Mapping[str, Zone] = MappingProxyType({})


def validate_zone(zone: Zone) -> None:
    """
    구역 데이터의 유효성을 확인합니다.

    Raises:
        ValidationError: 반경이 양수가 아니거나 중심 좌표가 유효하지 않을 때
    """
    if not zone.radius_m > 0:
        raise ValidationError(f"zone radius must be positive, got {zone.radius_m}")
    if not validate_coordinates(zone.center.latitude, zone.center.longitude):
        raise ValidationError(
            f"invalid zone center ({zone.center.latitude}, {zone.center.longitude})"
        )


class ZoneIndex:
    """활성 구역 스냅샷 기반 인덱스

    읽기는 잠금 없이 현재 스냅샷을 사용하고, 변경은 새 스냅샷을
    만든 뒤 한 번에 교체합니다.
    """

    def __init__(self, zones: Iterable[Zone] = ()):
        self._write_lock = threading.Lock()
        self._snapshot: Mapping[str, Zone] = _EMPTY
        self.replace_all(zones)

    # ---- 조회 ----

    def snapshot(self) -> Tuple[Zone, ...]:
        """현재 활성 구역 목록"""
        return tuple(self._snapshot.values())

    def get(self, zone_id: str) -> Zone:
        zone = self._snapshot.get(zone_id)
        if zone is None:
            raise NotFoundError("zone", zone_id)
        return zone

    def __len__(self) -> int:
        return len(self._snapshot)

    def __contains__(self, zone_id: object) -> bool:
        return zone_id in self._snapshot

    def containing_zones(self, p: Position) -> Set[Zone]:
        """
        위치를 포함하는 구역을 반환합니다 (경계 포함).

        Args:
            p: 확인할 위치

        Returns:
            distance(p, center) <= radius 인 구역 집합
        """
        return {z for _, z in self._containing(p)}

    def containing_with_distance(self, p: Position) -> List[Tuple[Zone, float]]:
        """포함 구역과 중심까지의 거리를 거리순으로 반환합니다."""
        hits = sorted(self._containing(p), key=lambda item: (item[0], item[1].id))
        return [(z, d) for d, z in hits]

    def nearby_zones(self, p: Position, radius_m: float) -> List[Tuple[Zone, float]]:
        """
        중심이 반경 내에 있는 구역을 거리 오름차순으로 반환합니다.

        구역 반경은 고려하지 않는 순수 근접 검색이며 매 호출마다 다시 계산합니다.

        Args:
            p: 검색 중심
            radius_m: 검색 반경 (미터)

        Returns:
            (구역, 거리) 목록
        """
        if radius_m < 0:
            raise ValidationError(f"search radius must not be negative, got {radius_m}")
        found = []
        for zone in self._snapshot.values():
            d = distance_meters(p, zone.center)
            if d <= radius_m:
                found.append((zone, d))
        found.sort(key=lambda item: (item[1], item[0].id))
        return found

    def is_in_risk_zone(self, p: Position) -> bool:
        """위험 구역 안에 있으면 True"""
        return any(z.is_risk for _, z in self._containing(p))

    def risk_zones(self) -> List[Zone]:
        """활성 위험 구역 목록"""
        return [z for z in self._snapshot.values() if z.is_risk]

    def _containing(self, p: Position) -> List[Tuple[float, Zone]]:
        zones = self._snapshot
        hits = []
        for zone in zones.values():
            d = distance_meters(p, zone.center)
            if d <= zone.radius_m:
                hits.append((d, zone))
        return hits

    # ---- 변경 ----

    def upsert(self, zone: Zone) -> None:
        """
        구역을 추가하거나 교체합니다. 비활성 구역은 인덱스에서 제외됩니다.

        Raises:
            ValidationError: 구역 데이터가 유효하지 않을 때
        """
        validate_zone(zone)
        with self._write_lock:
            zones = dict(self._snapshot)
            if zone.active:
                zones[zone.id] = zone
            else:
                zones.pop(zone.id, None)
            self._publish(zones)
        log.debug(f"구역 반영 id:{zone.id} kind:{zone.kind} active:{zone.active}")

    def remove(self, zone_id: str) -> Optional[Zone]:
        """구역을 제거하고 제거된 구역을 반환합니다 (없으면 None)."""
        with self._write_lock:
            if zone_id not in self._snapshot:
                return None
            zones = dict(self._snapshot)
            removed = zones.pop(zone_id)
            self._publish(zones)
        log.debug(f"구역 제거 id:{zone_id}")
        return removed

    def replace_all(self, zones: Iterable[Zone]) -> None:
        """전체 구역 집합을 한 번에 교체합니다."""
        fresh = {}
        for zone in zones:
            validate_zone(zone)
            if zone.active:
                fresh[zone.id] = zone
        with self._write_lock:
            self._publish(fresh)

    async def load(self, store) -> int:
        """
        레코드 저장소에서 활성 구역을 읽어 인덱스를 채웁니다.

        Args:
            store: RecordStorePort 구현

        Returns:
            적재된 구역 수
        """
        zones = await store.list_zones(active=True)
        self.replace_all(zones)
        log.info(f"구역 인덱스 적재 완료: {len(self)}개")
        return len(self)

    def _publish(self, zones: dict) -> None:
        self._snapshot = MappingProxyType(zones)
        metrics.active_zones.set(len(zones))
