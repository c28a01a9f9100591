"""
Safety score evaluation for SafeTrip.

This module computes the 0-100 safety score of a position from
risk-zone proximity, time of day and recent nearby alerts.
"""

import time
from datetime import datetime, timedelta
from typing import Iterable, Optional, Sequence
from zoneinfo import ZoneInfo

from safetrip.common.geo import distance_meters
from safetrip.observability import metrics
from safetrip.observability.logging_setup import get_logger
from safetrip.settings import ScoringConfig
from .models import Alert, Position, Zone, as_utc
from .zones import ZoneIndex

log = get_logger("safetrip.scoring")

MIN_SCORE = 0
MAX_SCORE = 100


def local_hour(now: datetime, tz: Optional[str] = None) -> int:
    """
    야간 판정에 사용할 현지 시각(시)을 반환합니다.

    Args:
        now: 기준 시각 (naive면 이미 현지 시각으로 간주)
        tz: IANA 시간대 이름 (None이면 프로세스 현지 시간대)

    Returns:
        0-23 시
    """
    if now.tzinfo is not None:
        now = now.astimezone(ZoneInfo(tz)) if tz else now.astimezone()
    return now.hour


def is_night(hour: int, config: ScoringConfig) -> bool:
    return hour >= config.night_start_hour or hour <= config.night_end_hour


def zone_penalty(p: Position, zones: Iterable[Zone], config: ScoringConfig) -> int:
    """위험 구역별 감점을 합산합니다 (구역마다 독립, 누적)."""
    penalty = 0
    for zone in zones:
        if not zone.is_risk:
            continue
        d = distance_meters(p, zone.center)
        if d <= zone.radius_m:
            penalty += config.inside_risk_penalty
        elif d <= config.near_radius_factor * zone.radius_m:
            penalty += config.near_risk_penalty
    return penalty


def qualifying_alerts(p: Position, now: datetime, recent_alerts: Iterable[Alert],
                      config: ScoringConfig) -> int:
    """반경/기간/종류 조건을 만족하는 최근 경보 수"""
    upper = as_utc(now)
    since = upper - timedelta(hours=config.incident_window_hours)
    kinds = set(config.incident_kinds)
    count = 0
    for alert in recent_alerts:
        if alert.kind.value not in kinds:
            continue
        if not (since <= as_utc(alert.created_at) <= upper):
            continue
        if distance_meters(p, alert.location) <= config.incident_radius_m:
            count += 1
    return count


def compute_score(p: Position, now: datetime, recent_alerts: Sequence[Alert],
                  risk_zones: Iterable[Zone], config: Optional[ScoringConfig] = None) -> int:
    """
    안전 점수를 계산합니다 (순수 함수).

    Args:
        p: 평가할 위치
        now: 기준 시각
        recent_alerts: 후보 경보 (조건 필터는 여기서 적용)
        risk_zones: 평가할 구역 (위험 구역만 반영)
        config: 점수 설정

    Returns:
        0-100 정수 점수
    """
    config = config or ScoringConfig()
    score = config.base_score
    score -= zone_penalty(p, risk_zones, config)

    if is_night(local_hour(now, config.timezone), config):
        score -= config.night_penalty

    score -= qualifying_alerts(p, now, recent_alerts, config) * config.incident_penalty

    return int(max(MIN_SCORE, min(MAX_SCORE, score)))


class ScoreEngine:
    """구역 인덱스와 경보 조회를 묶어 점수를 계산하는 엔진

    협력자 조회가 실패하면 이전 점수(없으면 기본 점수)를 돌려주며
    예외를 올리지 않습니다.
    """

    def __init__(self, zones: ZoneIndex, store, config: Optional[ScoringConfig] = None):
        """
        초기화합니다.

        Args:
            zones: 구역 인덱스
            store: recent_alerts를 제공하는 RecordStorePort
            config: 점수 설정
        """
        self.zones = zones
        self.store = store
        self.config = config or ScoringConfig()

    async def score(self, p: Position, now: datetime, previous: Optional[int] = None) -> int:
        """
        위치의 안전 점수를 계산합니다.

        Args:
            p: 평가할 위치
            now: 기준 시각
            previous: 캐시된 이전 점수

        Returns:
            0-100 정수 점수
        """
        started = time.perf_counter()
        try:
            risk_zones = self.zones.risk_zones()
            since = as_utc(now) - timedelta(hours=self.config.incident_window_hours)
            recent = await self.store.recent_alerts(
                p,
                self.config.incident_radius_m,
                since,
                self.config.incident_kinds,
            )
        except Exception as e:
            fallback = previous if previous is not None else self.config.base_score
            metrics.score_fallbacks.labels(reason=type(e).__name__).inc()
            log.warning(f"안전 점수 계산 실패, 대체 점수 사용 score:{fallback} error:{e}")
            return fallback

        result = compute_score(p, now, recent, risk_zones, self.config)
        metrics.safety_score.observe(result)
        metrics.score_seconds.observe(time.perf_counter() - started)
        return result
