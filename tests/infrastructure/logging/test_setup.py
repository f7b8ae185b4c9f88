"""Tests for root logger configuration."""

import io
import json
import logging

from somdelim.infrastructure.logging import setup_logging, get_logger, replicate_context
from somdelim.infrastructure.logging.handlers import ConsoleHandler, FileHandler, HumanFormatter


class TestSetupLogging:

    def test_json_log_file(self, tmp_path):
        log_file = tmp_path / 'logs' / 'run.jsonl'
        setup_logging(log_level='WARNING', log_file=log_file, experiment_id='run-0001')

        root = logging.getLogger()
        assert any(isinstance(h, FileHandler) for h in root.handlers)
        assert any(isinstance(h, ConsoleHandler) for h in root.handlers)

        get_logger('somdelim.test.setup').info("Grid built", extra={'context': {'n_units': 25}})
        for handler in root.handlers:
            handler.flush()

        records = [json.loads(line) for line in log_file.read_text().splitlines()]
        grid_record = [r for r in records if r['message'] == "Grid built"][0]
        assert grid_record['level'] == 'INFO'
        assert grid_record['context']['experiment_id'] == 'run-0001'
        assert grid_record['context']['n_units'] == 25

    def test_console_only(self):
        setup_logging(log_level='ERROR', console=True)
        root = logging.getLogger()
        assert root.level == logging.ERROR
        assert not any(isinstance(h, FileHandler) for h in root.handlers)


class TestHumanFormatter:

    def test_context_tags(self):
        stream = io.StringIO()
        handler = ConsoleHandler(stream=stream)
        assert isinstance(handler.formatter, HumanFormatter)

        logger = get_logger('somdelim.test.console')
        logger.setLevel(logging.INFO)
        logger.addHandler(handler)
        logger.propagate = False
        token = replicate_context.set(4)
        try:
            logger.info("Replicate done")
        finally:
            replicate_context.reset(token)
            logger.removeHandler(handler)
            logger.propagate = True

        line = stream.getvalue()
        assert "rep:4" in line
        assert "Replicate done" in line
        assert '\033[' not in line
