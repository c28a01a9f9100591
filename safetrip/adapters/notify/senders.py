"""
Notification channel senders for SafeTrip.

This module provides the SMS gateway client and the SMTP email
sender used by the outbox worker to deliver notifications.
"""

import asyncio
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Any, Dict, Optional, Protocol, Sequence

import aiohttp

from safetrip.core.errors import CollaboratorError
from safetrip.observability.logging_setup import get_logger
from safetrip.settings import NotificationConfig

log = get_logger("safetrip.senders")


class ChannelSender(Protocol):
    """채널별 발송기 인터페이스"""

    async def send(self, recipients: Sequence[str], payload: Dict[str, Any]) -> None:
        """
        메시지를 발송합니다.

        Raises:
            CollaboratorError: 발송 실패 (재시도 대상)
        """
        ...


class SmsSender:
    """SMS 게이트웨이 클라이언트"""

    def __init__(self,
                 api_url: str,
                 api_key: str,
                 sender: str = "SAFETRIP",
                 timeout: int = 10,
                 session: Optional[aiohttp.ClientSession] = None):
        """
        초기화합니다.

        Args:
            api_url: SMS 게이트웨이 URL
            api_key: API 키
            sender: 발신자 이름
            timeout: 요청 타임아웃 (초)
            session: 외부에서 관리하는 세션 (테스트/재사용)
        """
        self.api_url = api_url
        self.api_key = api_key
        self.sender = sender
        self.timeout = timeout
        self.session = session

    @classmethod
    def from_config(cls, config: NotificationConfig) -> "SmsSender":
        return cls(config.sms_api_url, config.sms_api_key, config.sms_sender, config.sms_timeout_sec)

    @property
    def configured(self) -> bool:
        return bool(self.api_url and self.api_key)

    async def send(self, recipients: Sequence[str], payload: Dict[str, Any]) -> None:
        """
        SMS를 발송합니다. 설정이 없으면 기록만 하고 건너뜁니다.

        Args:
            recipients: 전화번호 목록
            payload: "text" 키를 포함한 메시지
        """
        if not self.configured:
            log.info(f"SMS 서비스 미설정, 발송 생략 recipients:{len(recipients)}")
            return

        data = {
            "apikey": self.api_key,
            "numbers": ",".join(recipients),
            "message": payload.get("text", ""),
            "sender": self.sender,
        }

        owns_session = self.session is None
        session = self.session or aiohttp.ClientSession(
            timeout=aiohttp.ClientTimeout(total=self.timeout)
        )
        try:
            async with session.post(self.api_url, data=data) as response:
                response.raise_for_status()
                body = await response.text()
                log.info(f"SMS 발송 완료 recipients:{len(recipients)} status:{response.status}")
                log.debug(f"SMS 게이트웨이 응답: {body}")
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise CollaboratorError(f"sms delivery failed: {e}") from e
        finally:
            if owns_session:
                await session.close()


class EmailSender:
    """SMTP 이메일 발송기"""

    def __init__(self,
                 host: str,
                 port: int = 587,
                 username: str = "",
                 password: str = "",
                 from_addr: str = "",
                 starttls: bool = True,
                 timeout: int = 10):
        """
        초기화합니다.

        Args:
            host: SMTP 호스트
            port: SMTP 포트
            username: 로그인 사용자
            password: 로그인 비밀번호
            from_addr: 발신 주소 (없으면 username)
            starttls: STARTTLS 사용 여부
            timeout: 연결 타임아웃 (초)
        """
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.from_addr = from_addr or username
        self.starttls = starttls
        self.timeout = timeout

    @classmethod
    def from_config(cls, config: NotificationConfig) -> "EmailSender":
        return cls(config.email_host, config.email_port, config.email_user,
                   config.email_password, config.email_from, config.email_starttls,
                   config.sms_timeout_sec)

    @property
    def configured(self) -> bool:
        return bool(self.host and self.from_addr)

    def build_message(self, recipients: Sequence[str], payload: Dict[str, Any]) -> MIMEMultipart:
        """payload로 MIME 메시지를 만듭니다."""
        msg = MIMEMultipart("alternative")
        msg["Subject"] = payload.get("subject", "SafeTrip notification")
        msg["From"] = self.from_addr
        msg["To"] = ", ".join(recipients)
        msg.attach(MIMEText(payload.get("text", ""), "plain", "utf-8"))
        if payload.get("html"):
            msg.attach(MIMEText(payload["html"], "html", "utf-8"))
        return msg

    def _send_sync(self, recipients: Sequence[str], msg: MIMEMultipart) -> None:
        with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as smtp:
            if self.starttls:
                smtp.starttls()
            if self.username:
                smtp.login(self.username, self.password)
            smtp.sendmail(self.from_addr, list(recipients), msg.as_string())

    async def send(self, recipients: Sequence[str], payload: Dict[str, Any]) -> None:
        """
        이메일을 발송합니다. 설정이 없으면 기록만 하고 건너뜁니다.

        Args:
            recipients: 이메일 주소 목록
            payload: subject/text/html 키를 가진 메시지
        """
        if not self.configured:
            log.info(f"이메일 서비스 미설정, 발송 생략 recipients:{len(recipients)}")
            return

        msg = self.build_message(recipients, payload)
        try:
            await asyncio.to_thread(self._send_sync, recipients, msg)
        except (smtplib.SMTPException, OSError) as e:
            raise CollaboratorError(f"email delivery failed: {e}") from e
        log.info(f"이메일 발송 완료 recipients:{len(recipients)}")
