"""
Notification dispatch port interface.

This module defines the fire-and-forget protocol used by the
alert lifecycle and incident ledger to reach people.
"""

from typing import Any, Dict, Literal, Protocol, Sequence

Channel = Literal["sms", "email"]

class NotificationDispatchPort(Protocol):
    """알림 발송 포트 인터페이스"""
    
    async def notify(self, channel: Channel, recipients: Sequence[str], payload: Dict[str, Any]) -> None:
        """
        알림을 접수합니다. 전달 완료를 기다리지 않습니다.
        
        Args:
            channel: 발송 채널 ("sms" 또는 "email")
            recipients: 전화번호 또는 이메일 주소 목록
            payload: 메시지 본문 (subject, text, html 등)
        """
        ...
