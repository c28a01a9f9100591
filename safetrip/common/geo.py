"""
Geographic utilities for SafeTrip.

This module provides great-circle distance calculation
and coordinate validation.
"""

import math
from typing import Protocol

# 지구 반지름 (미터)
EARTH_RADIUS_M = 6_371_000.0


class HasCoordinates(Protocol):
    latitude: float
    longitude: float


def haversine_distance(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """
    두 지점 간의 Haversine 거리를 계산합니다 (미터).
    
    Args:
        lat1: 첫 번째 지점의 위도
        lon1: 첫 번째 지점의 경도
        lat2: 두 번째 지점의 위도
        lon2: 두 번째 지점의 경도
        
    Returns:
        두 지점 간의 거리 (미터)
    """
    # 도를 라디안으로 변환
    lat1_rad = math.radians(lat1)
    lat2_rad = math.radians(lat2)
    
    # 위도와 경도의 차이
    dlat = lat2_rad - lat1_rad
    dlon = math.radians(lon2 - lon1)
    
    # Haversine 공식
    a = (math.sin(dlat / 2) ** 2 +
         math.cos(lat1_rad) * math.cos(lat2_rad) * math.sin(dlon / 2) ** 2)
    # 부동소수점 오차로 1을 살짝 넘는 경우 방지
    a = min(1.0, max(0.0, a))
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    
    return c * EARTH_RADIUS_M


def distance_meters(a: HasCoordinates, b: HasCoordinates) -> float:
    """
    두 위치 객체 간의 거리를 계산합니다 (미터).
    
    Args:
        a: 첫 번째 위치 (latitude, longitude 속성)
        b: 두 번째 위치
        
    Returns:
        0 이상의 거리 (미터)
    """
    return haversine_distance(a.latitude, a.longitude, b.latitude, b.longitude)


def validate_coordinates(lat: float, lon: float) -> bool:
    """
    좌표가 유효한지 확인합니다.
    
    Args:
        lat: 위도
        lon: 경도
        
    Returns:
        좌표가 유효하면 True
    """
    if lat is None or lon is None:
        return False
    if math.isnan(lat) or math.isnan(lon):
        return False
    return -90 <= lat <= 90 and -180 <= lon <= 180


def bounding_box(lat: float, lon: float, radius_m: float) -> tuple[float, float, float, float]:
    """
    중심점과 반경을 감싸는 위경도 경계 상자를 계산합니다.
    
    정확한 거리 필터 전에 후보를 줄이는 용도이며, 극 근처에서는
    경도 범위를 전체로 넓힙니다.
    
    Returns:
        (min_lat, min_lon, max_lat, max_lon)
    """
    dlat = math.degrees(radius_m / EARTH_RADIUS_M)
    min_lat = max(-90.0, lat - dlat)
    max_lat = min(90.0, lat + dlat)
    
    cos_lat = math.cos(math.radians(lat))
    if cos_lat < 1e-6 or max_lat >= 90.0 or min_lat <= -90.0:
        return (min_lat, -180.0, max_lat, 180.0)
    
    dlon = math.degrees(radius_m / (EARTH_RADIUS_M * cos_lat))
    # 날짜변경선을 넘으면 경도 범위 전체 사용
    if dlon >= 180.0 or lon - dlon < -180.0 or lon + dlon > 180.0:
        return (min_lat, -180.0, max_lat, 180.0)
    return (min_lat, lon - dlon, max_lat, lon + dlon)
