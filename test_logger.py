"""
日志管理测试
"""

import asyncio
import logging

import pytest

import logger as log_module
from logger import (
    ContextFilter,
    LogConfig,
    LogFormatter,
    LoggerManager,
    add_context,
    clear_context,
    get_context,
)


@pytest.fixture
def manager():
    manager = LoggerManager()
    yield manager
    root = logging.getLogger()
    for handler in manager.handlers:
        root.removeHandler(handler)
        handler.close()
    manager.handlers = []


def _record(msg='message'):
    return logging.LogRecord('socks5-proxy', logging.INFO, __file__, 1, msg, None, None)


def test_context_is_isolated_between_tasks():
    async def session(session_id, seen):
        clear_context()
        add_context(session_id=session_id, client=f'10.0.0.{session_id}:1000')
        await asyncio.sleep(0.01)
        seen[session_id] = get_context()

    async def run():
        seen = {}
        await asyncio.gather(*(session(i, seen) for i in range(3)))
        return seen

    seen = asyncio.run(run())
    for i in range(3):
        assert seen[i] == {'session_id': i, 'client': f'10.0.0.{i}:1000'}


def test_context_filter_formats_fields():
    async def run():
        add_context(session_id=7, target='example.com:443')
        record = _record()
        ContextFilter(['session_id', 'client', 'target']).filter(record)
        return record.context

    assert asyncio.run(run()) == 'session_id=7 | client=- | target=example.com:443'


def test_formatter_handles_records_without_context():
    formatter = LogFormatter(fmt='[%(context)s] %(message)s')
    assert formatter.format(_record('hi')) == '[-] hi'


def test_formatter_restores_levelname_after_color():
    formatter = LogFormatter(fmt='%(levelname)s %(message)s', use_color=True)
    record = _record()
    assert '\033[32m' in formatter.format(record)
    assert record.levelname == 'INFO'


def test_initialize_with_file_handler(manager, tmp_path):
    manager.initialize(LogConfig(log_dir=str(tmp_path), enable_console=False, enable_file=True))
    logging.getLogger('socks5-proxy.test').info('written to file')
    for handler in manager.handlers:
        handler.flush()

    content = (tmp_path / 'socks5-proxy.log').read_text(encoding='utf-8')
    assert 'written to file' in content
    assert 'session_id=' in content


def test_reinitialize_replaces_handlers(manager):
    manager.initialize(LogConfig(enable_console=True))
    manager.initialize(LogConfig(enable_console=True))
    root = logging.getLogger()
    assert sum(1 for handler in root.handlers if handler in manager.handlers) == 1


def test_load_config_from_file_and_env(manager, tmp_path, monkeypatch):
    path = tmp_path / 'config.yaml'
    path.write_text('logging:\n  level: WARNING\n  enable_file: true\n', encoding='utf-8')
    monkeypatch.setenv('LOG_LEVEL', 'DEBUG')

    config = manager.load_config_from_file(str(path))
    assert config.level == 'DEBUG'
    assert config.enable_file is True
    assert config.context_fields == log_module.DEFAULT_CONTEXT_FIELDS


def test_singleton():
    assert LoggerManager() is LoggerManager()
