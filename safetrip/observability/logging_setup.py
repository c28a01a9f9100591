"""
Logging configuration for SafeTrip.

All modules log through loguru loggers bound with a component name.
Records emitted through stdlib logging (uvicorn, aiosqlite, aiohttp)
are forwarded into the same sinks.
"""

from __future__ import annotations
import logging
import sys
from typing import Iterable

from loguru import logger

from safetrip.settings import Observability

STDLIB_LOGGERS = ("uvicorn", "uvicorn.access", "uvicorn.error", "aiosqlite", "aiohttp")

CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
    "<level>{level:<7}</level> | "
    "<cyan>{extra[name]}</cyan> - "
    "<level>{message}</level>"
)


class InterceptHandler(logging.Handler):
    """stdlib logging 레코드를 loguru로 전달"""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno
        logger.opt(depth=6, exception=record.exc_info).log(level, record.getMessage())


def route_stdlib(names: Iterable[str] = STDLIB_LOGGERS) -> None:
    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)
    for name in names:
        std = logging.getLogger(name)
        std.handlers = [InterceptHandler()]
        std.propagate = False


def setup_logging(config: Observability) -> None:
    """
    설정에 따라 loguru sink를 구성합니다.

    log_json이 켜져 있으면 한 줄 JSON(serialize)으로 stdout에 기록하고,
    아니면 컬러 콘솔 포맷을 사용합니다. 모든 레코드에 서비스 이름이 붙습니다.

    Args:
        config: Observability 설정
    """
    logger.remove()
    logger.configure(extra={"name": "safetrip", "service": config.service_name})
    if config.log_json:
        logger.add(sys.stdout, serialize=True, level=config.log_level.upper(), backtrace=False,
                   diagnose=False)
    else:
        logger.add(sys.stdout, format=CONSOLE_FORMAT, colorize=True, level=config.log_level.upper(),
                   backtrace=True, diagnose=False)
    route_stdlib()


def setup_logging_dev(log_level: str = "INFO") -> None:
    """설정 로드 전 사용할 콘솔 로깅."""
    setup_logging(Observability(log_level=log_level))


def get_logger(name: str = "safetrip", **ctx):
    """선택적으로 컨텍스트를 바인딩한 logger 반환."""
    return logger.bind(name=name, **ctx)
