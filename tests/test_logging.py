from pathlib import Path

import pytest
from loguru import logger

from stratus.logging import LogConfig, setup_logging, teardown_logging

from tests.fakes import REGION

pytestmark = [pytest.mark.xdist_group("unit")]


class TestLogging:
    def test_file_sink_receives_component_messages(self, tmp_path: Path, cloud, allocator, running_node):
        cloud.default_pool[REGION] = ["172.24.4.1"]
        path = tmp_path / "stratus.log"
        handlers = setup_logging(LogConfig(console=False, file=str(path)))
        try:
            allocator.allocate(running_node)
            logger.complete()
        finally:
            teardown_logging(handlers)

        text = path.read_text()
        assert "Floating IP 172.24.4.1 attached" in text
        assert "[floating-ip]" in text

    def test_host_extra_is_left_alone(self):
        records = []
        sink = logger.add(lambda message: records.append(message.record), level="INFO")
        handlers = setup_logging(LogConfig(console=False))
        try:
            logger.info("host message")
        finally:
            teardown_logging(handlers)
            logger.remove(sink)

        (record,) = records
        assert "component" not in record["extra"]

    def test_console_only_returns_one_handler(self):
        handlers = setup_logging(LogConfig(level="WARNING"))
        try:
            assert len(handlers) == 1
        finally:
            teardown_logging(handlers)

    def test_no_sinks_requested(self):
        handlers = setup_logging(LogConfig(console=False))
        try:
            assert handlers == []
        finally:
            teardown_logging(handlers)
