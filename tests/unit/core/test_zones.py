"""
ZoneIndex 단위 테스트

구역 포함(경계 포함), 근접 검색, 스냅샷 교체 동작을 테스트합니다.
"""

import pytest
from hypothesis import given, strategies as st

from safetrip.common.geo import distance_meters
from safetrip.core.errors import NotFoundError, ValidationError
from safetrip.core.models import Zone, build, make_position
from safetrip.core.zones import ZoneIndex
from safetrip.adapters.storage import InMemoryRecordStore


def _zone(zone_id, lat, lng, radius, kind="risk", active=True):
    return Zone(id=zone_id, name=zone_id, kind=kind, center=make_position(lat, lng),
                radius_m=radius, region="test", active=active)


class TestZoneContainment:
    """구역 포함 테스트"""

    def test_boundary_is_inclusive(self):
        """중심에서 정확히 반경 거리인 점은 포함"""
        p = make_position(28.6200, 77.2090)
        center = make_position(28.6139, 77.2090)
        r = distance_meters(p, center)
        index = ZoneIndex([Zone(id="z", name="z", kind="risk", center=center, radius_m=r, region="x")])

        assert {z.id for z in index.containing_zones(p)} == {"z"}
        assert index.is_in_risk_zone(p) is True

    def test_just_outside_is_excluded(self):
        """반경을 조금이라도 넘으면 제외"""
        p = make_position(28.6200, 77.2090)
        center = make_position(28.6139, 77.2090)
        r = distance_meters(p, center) - 0.001
        index = ZoneIndex([Zone(id="z", name="z", kind="risk", center=center, radius_m=r, region="x")])

        assert index.containing_zones(p) == set()
        assert index.is_in_risk_zone(p) is False

    def test_neutral_zone_is_not_risk(self, neutral_zone):
        index = ZoneIndex([neutral_zone])
        assert index.containing_zones(neutral_zone.center) == {neutral_zone}
        assert index.is_in_risk_zone(neutral_zone.center) is False

    def test_legacy_danger_kind_normalized(self):
        """레거시 danger 태그는 risk로 취급"""
        zone = _zone("d", 10, 10, 100, kind="Danger")
        assert zone.kind == "risk"
        assert ZoneIndex([zone]).is_in_risk_zone(zone.center)

    def test_containing_with_distance_sorted(self):
        p = make_position(0, 0)
        index = ZoneIndex([_zone("far", 0, 0.005, 2000), _zone("near", 0, 0.001, 2000)])
        hits = index.containing_with_distance(p)
        assert [z.id for z, _ in hits] == ["near", "far"]
        assert hits[0][1] < hits[1][1]

    @given(
        lat=st.floats(min_value=-60, max_value=60, allow_nan=False),
        lng=st.floats(min_value=-170, max_value=170, allow_nan=False),
        radius=st.floats(min_value=1, max_value=50_000, allow_nan=False),
    )
    def test_center_always_contained(self, lat, lng, radius):
        """구역 중심은 항상 구역 안"""
        zone = _zone("c", lat, lng, radius)
        assert zone in ZoneIndex([zone]).containing_zones(zone.center)


class TestNearbyZones:
    """근접 검색 테스트"""

    def test_sorted_ascending_by_distance(self):
        p = make_position(0, 0)
        index = ZoneIndex([
            _zone("c", 0, 0.03, 10),
            _zone("a", 0, 0.01, 10),
            _zone("b", 0, 0.02, 10),
            _zone("out", 0, 1.0, 10),
        ])
        found = index.nearby_zones(p, 5000)
        assert [z.id for z, _ in found] == ["a", "b", "c"]
        distances = [d for _, d in found]
        assert distances == sorted(distances)

    def test_zone_radius_not_considered(self):
        """구역 반경이 커도 중심이 검색 반경 밖이면 제외"""
        index = ZoneIndex([_zone("big", 0, 0.1, 50_000)])
        assert index.nearby_zones(make_position(0, 0), 5000) == []

    def test_negative_radius_rejected(self):
        with pytest.raises(ValidationError):
            ZoneIndex().nearby_zones(make_position(0, 0), -1)


class TestZoneIndexMutation:
    """스냅샷 변경 테스트"""

    def test_upsert_and_remove(self, risk_zone):
        index = ZoneIndex()
        index.upsert(risk_zone)
        assert risk_zone.id in index
        assert index.get(risk_zone.id) == risk_zone

        removed = index.remove(risk_zone.id)
        assert removed == risk_zone
        assert len(index) == 0
        assert index.remove(risk_zone.id) is None

    def test_inactive_zone_dropped(self, risk_zone):
        index = ZoneIndex([risk_zone])
        index.upsert(risk_zone.model_copy(update={"active": False}))
        assert risk_zone.id not in index

    def test_get_missing_raises(self):
        with pytest.raises(NotFoundError):
            ZoneIndex().get("nope")

    def test_snapshot_is_stable_during_update(self, risk_zone, neutral_zone):
        """이전에 얻은 스냅샷은 이후 변경의 영향을 받지 않음"""
        index = ZoneIndex([risk_zone])
        before = index.snapshot()
        index.upsert(neutral_zone)
        assert before == (risk_zone,)
        assert len(index.snapshot()) == 2

    def test_risk_zones(self, risk_zone, neutral_zone):
        index = ZoneIndex([risk_zone, neutral_zone])
        assert index.risk_zones() == [risk_zone]

    def test_invalid_radius_rejected(self):
        """반경이 양수가 아니면 도메인 ValidationError"""
        with pytest.raises(ValidationError):
            build(Zone, name="bad", kind="risk", center=make_position(0, 0), radius_m=0, region="x")

    @pytest.mark.asyncio
    async def test_load_from_store(self, risk_zone, neutral_zone):
        """저장소에서 활성 구역만 적재"""
        store = InMemoryRecordStore()
        await store.save_zone(risk_zone)
        await store.save_zone(neutral_zone.model_copy(update={"active": False}))

        index = ZoneIndex()
        count = await index.load(store)

        assert count == 1
        assert risk_zone.id in index
