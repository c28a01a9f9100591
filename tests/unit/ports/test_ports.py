"""
Port 모듈 단위 테스트

포트 인터페이스와 어댑터 구현이 서로 맞물리는지 테스트합니다.
"""

import inspect

import pytest

from safetrip.adapters.notify import LoggingNotificationDispatcher, OutboxNotificationDispatcher
from safetrip.adapters.storage import InMemoryAccountDirectory, InMemoryRecordStore, SQLiteRecordStore
from safetrip.ports import AccountDirectoryPort, NotificationDispatchPort, RecordStorePort


def _port_methods(port):
    return [name for name, member in vars(port).items()
            if inspect.isfunction(member) and not name.startswith("_")]


class TestPortConformance:
    """어댑터가 포트 메서드를 모두 제공하는지 확인"""

    @pytest.mark.parametrize("adapter", [InMemoryRecordStore, SQLiteRecordStore])
    def test_record_store_adapters(self, adapter):
        for name in _port_methods(RecordStorePort):
            method = getattr(adapter, name, None)
            assert method is not None, f"{adapter.__name__}.{name} 누락"
            assert inspect.iscoroutinefunction(method), f"{adapter.__name__}.{name}는 async여야 함"

    def test_directory_adapter(self):
        for name in _port_methods(AccountDirectoryPort):
            assert inspect.iscoroutinefunction(getattr(InMemoryAccountDirectory, name))

    @pytest.mark.parametrize("adapter", [OutboxNotificationDispatcher, LoggingNotificationDispatcher])
    def test_dispatch_adapters(self, adapter):
        assert _port_methods(NotificationDispatchPort) == ["notify"]
        assert inspect.iscoroutinefunction(adapter.notify)

    def test_record_store_signatures_match(self):
        """키워드 전용 필터 인자가 어댑터에서도 유지되는지 확인"""
        for name in ("list_zones", "list_alerts"):
            expected = inspect.signature(getattr(RecordStorePort, name)).parameters
            for adapter in (InMemoryRecordStore, SQLiteRecordStore):
                actual = inspect.signature(getattr(adapter, name)).parameters
                for param, spec in expected.items():
                    assert param in actual
                    assert actual[param].kind == spec.kind


class TestMockDispatchPort:
    """포트를 만족하는 간단한 구현으로 호출 계약 확인"""

    @pytest.mark.asyncio
    async def test_notify_is_fire_and_forget(self):
        class RecordingPort:
            def __init__(self):
                self.calls = []

            async def notify(self, channel, recipients, payload):
                self.calls.append((channel, list(recipients), payload))

        port: NotificationDispatchPort = RecordingPort()
        result = await port.notify("sms", ("+911",), {"text": "hi"})

        assert result is None
        assert port.calls == [("sms", ["+911"], {"text": "hi"})]
