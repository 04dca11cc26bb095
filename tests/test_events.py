import logging

import pytest

from common.events import EventEmitter

# 로깅 설정
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def test_handlers_run_in_registration_order():
    """핸들러가 등록 순서대로 같은 인자로 호출되는지 테스트"""
    emitter = EventEmitter()
    calls = []
    emitter.on("task:completed", lambda task: calls.append(("first", task)))
    emitter.on("task:completed", lambda task: calls.append(("second", task)))

    count = emitter.emit("task:completed", "task-1")

    assert count == 2
    assert calls == [("first", "task-1"), ("second", "task-1")]


def test_handler_exception_does_not_stop_others():
    """한 핸들러의 예외가 다른 핸들러와 발행자에게 전파되지 않는지 테스트"""
    emitter = EventEmitter()
    calls = []

    def broken(*args):
        raise RuntimeError("boom")

    emitter.on("agent:offline", broken)
    emitter.on("agent:offline", calls.append)

    assert emitter.emit("agent:offline", "agent-1") == 2
    assert calls == ["agent-1"]


def test_once_and_off():
    """once 핸들러는 한 번만 실행되고, 등록되지 않은 핸들러 해제는 False"""
    emitter = EventEmitter()
    calls = []
    emitter.once("suite:completed", calls.append)

    emitter.emit("suite:completed", 1)
    emitter.emit("suite:completed", 2)

    assert calls == [1]
    assert emitter.listener_count("suite:completed") == 0
    assert emitter.off("suite:completed", calls.append) is False


def test_emit_without_handlers_and_reset():
    emitter = EventEmitter()
    assert emitter.emit("nothing") == 0

    emitter.on("lock:acquired", lambda lock: None)
    emitter.remove_all_listeners()
    assert emitter.listener_count("lock:acquired") == 0

    with pytest.raises(ValueError):
        emitter.on("lock:acquired", "not-callable")
