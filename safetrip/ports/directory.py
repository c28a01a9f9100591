"""
Account directory port interface.

This module defines the protocol for resolving agent and
authority profiles owned by the external account service.
"""

from typing import Iterable, List, Optional, Protocol
from safetrip.core.models import Agent, Authority

class AccountDirectoryPort(Protocol):
    """계정 디렉터리 포트 인터페이스"""
    
    async def resolve_agent(self, user_id: str) -> Agent:
        """
        여행자 프로필을 조회합니다.
        
        Args:
            user_id: 사용자 ID
            
        Returns:
            여행자 프로필
            
        Raises:
            NotFoundError: 프로필이 없을 때
        """
        ...
    
    async def resolve_authority(self, user_id: str) -> Authority:
        """
        담당자 프로필을 조회합니다.
        
        Raises:
            NotFoundError: 프로필이 없을 때
        """
        ...
    
    async def on_duty_authorities(self, departments: Optional[Iterable[str]] = None) -> List[Authority]:
        """
        근무 중인 담당자 목록을 조회합니다.
        
        Args:
            departments: 부서 필터 (None이면 전체)
            
        Returns:
            디렉터리 순서를 유지한 담당자 목록
        """
        ...
