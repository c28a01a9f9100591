"""
Notification dispatchers for SafeTrip.

This module implements the notification dispatch port with the
outbox pattern: notify() only records the request, a background
worker delivers it with bounded retry and backoff.
"""

import asyncio
from collections import deque
from typing import Any, Dict, Mapping, Sequence

from safetrip.adapters.storage.sqlite_outbox import SQLiteOutbox
from safetrip.common.retry import backoff_delay
from safetrip.core.errors import ValidationError
from safetrip.observability import metrics
from safetrip.observability.logging_setup import get_logger
from .senders import ChannelSender

log = get_logger("safetrip.dispatch")

CHANNELS = ("sms", "email")


class OutboxNotificationDispatcher:
    """Outbox 기반 알림 발송기"""

    def __init__(self,
                 outbox: SQLiteOutbox,
                 senders: Mapping[str, ChannelSender],
                 *,
                 max_retries: int = 10,
                 backoff_initial: float = 0.5,
                 backoff_max: float = 30.0,
                 poll_interval: float = 1.0):
        """
        초기화합니다.

        Args:
            outbox: Outbox 인스턴스
            senders: 채널별 발송기 {"sms": ..., "email": ...}
            max_retries: 항목별 최대 시도 횟수
            backoff_initial: 초기 백오프 시간
            backoff_max: 최대 백오프 시간
            poll_interval: 빈 Outbox 폴링 간격 (초)
        """
        self.outbox = outbox
        self.senders = dict(senders)
        self.max_retries = max_retries
        self.backoff_initial = backoff_initial
        self.backoff_max = backoff_max
        self.poll_interval = poll_interval
        self._running = False

    async def notify(self, channel: str, recipients: Sequence[str], payload: Dict[str, Any]) -> None:
        """
        알림을 Outbox에 기록합니다. 전달은 워커가 담당합니다.

        Args:
            channel: "sms" 또는 "email"
            recipients: 수신자 목록
            payload: 메시지 본문
        """
        if channel not in CHANNELS:
            raise ValidationError(f"unknown notification channel '{channel}'")
        targets = [r for r in recipients if r]
        if not targets:
            return
        oid = await self.outbox.enqueue(channel, targets, payload)
        metrics.notifications_enqueued.labels(channel=channel).inc()
        log.debug(f"알림 접수 id:{oid} channel:{channel} recipients:{len(targets)}")

    async def run(self) -> None:
        """발송 워커를 시작합니다."""
        self._running = True
        log.info("알림 발송 워커 시작")

        while self._running:
            try:
                processed = await self.process_once()
                metrics.outbox_size.set(await self.outbox.get_count())
                if not processed:
                    await asyncio.sleep(self.poll_interval)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                log.error(f"Outbox 처리 오류: {e}")
                await asyncio.sleep(5)  # 오류 시 5초 대기

    async def process_once(self) -> bool:
        """
        발송 시각이 된 항목 하나를 처리합니다.

        Returns:
            처리한 항목이 있으면 True
        """
        item = await self.outbox.peek_due()
        if not item:
            return False

        # 최대 재시도 횟수 확인
        if item.attempts >= self.max_retries:
            log.warning(f"최대 재시도 횟수 초과, 항목 폐기: id:{item.id} channel:{item.channel} "
                        f"last_error:{item.last_error}")
            metrics.notifications_dropped.labels(channel=item.channel).inc()
            await self.outbox.delete(item.id)
            return True

        sender = self.senders.get(item.channel)
        if sender is None:
            log.error(f"발송기 없음, 항목 폐기: id:{item.id} channel:{item.channel}")
            metrics.notifications_dropped.labels(channel=item.channel).inc()
            await self.outbox.delete(item.id)
            return True

        try:
            await sender.send(item.recipients, item.payload)
        except Exception as e:
            delay = backoff_delay(item.attempts + 1, self.backoff_initial, self.backoff_max)
            log.error(f"알림 발송 실패: id:{item.id} channel:{item.channel} attempt:{item.attempts + 1} "
                      f"retry_in:{delay:.1f}s error:{e}")
            metrics.notifications_failed.labels(channel=item.channel, stage="deliver").inc()
            await self.outbox.mark_attempt(item.id, delay, str(e))
            return True

        # 성공 시 항목 삭제
        await self.outbox.delete(item.id)
        metrics.notifications_sent.labels(channel=item.channel).inc()
        log.info(f"알림 발송 성공: id:{item.id} channel:{item.channel}")
        return True

    async def stop(self) -> None:
        """발송을 중지합니다."""
        self._running = False
        log.info("알림 발송 워커 중지")


class LoggingNotificationDispatcher:
    """로그만 남기는 개발용 발송기 (최근 history개 요청만 보관)"""

    def __init__(self, history: int = 100):
        self.sent = deque(maxlen=history)

    async def notify(self, channel: str, recipients: Sequence[str], payload: Dict[str, Any]) -> None:
        if channel not in CHANNELS:
            raise ValidationError(f"unknown notification channel '{channel}'")
        self.sent.append((channel, list(recipients), dict(payload)))
        metrics.notifications_enqueued.labels(channel=channel).inc()
        log.info(f"알림(로그 전용) channel:{channel} recipients:{list(recipients)} "
                 f"subject:{payload.get('subject')}")
