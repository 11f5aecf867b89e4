"""
配置加载测试
"""

import pytest

from config import DEFAULT_PORT, ProxyConfig, load_config, load_proxy_config


def test_defaults():
    config = ProxyConfig()
    assert config.host == '0.0.0.0'
    assert config.port == DEFAULT_PORT == 9150
    assert config.buffer_size == 4096
    assert config.precise_reply_codes is False
    config.validate()


def test_missing_file_returns_empty(tmp_path):
    assert load_config(str(tmp_path / 'missing.yaml')) == {}


def test_invalid_yaml_returns_empty(tmp_path):
    path = tmp_path / 'broken.yaml'
    path.write_text('proxy: [unclosed\n', encoding='utf-8')
    assert load_config(str(path)) == {}


def test_empty_file_returns_empty(tmp_path):
    path = tmp_path / 'empty.yaml'
    path.write_text('', encoding='utf-8')
    assert load_config(str(path)) == {}


def test_load_proxy_section(tmp_path):
    path = tmp_path / 'config.yaml'
    path.write_text(
        'proxy:\n'
        '  port: 1080\n'
        '  idle_timeout: null\n'
        '  precise_reply_codes: true\n'
        '  unknown_option: 1\n',
        encoding='utf-8'
    )
    config = load_proxy_config(str(path))
    assert config.port == 1080
    assert config.idle_timeout is None
    assert config.precise_reply_codes is True
    assert config.host == '0.0.0.0'


def test_overrides_take_precedence(tmp_path):
    path = tmp_path / 'config.yaml'
    path.write_text('proxy:\n  port: 1080\n  host: 127.0.0.1\n', encoding='utf-8')
    config = load_proxy_config(str(path), port=2080, host=None)
    assert config.port == 2080
    assert config.host == '127.0.0.1'


def test_no_config_file():
    assert load_proxy_config(None, port=1234).port == 1234


@pytest.mark.parametrize('overrides', [
    {'port': 70000},
    {'port': -1},
    {'buffer_size': 0},
    {'backlog': 0},
    {'idle_timeout': 0},
    {'connect_timeout': -5},
    {'monitor_interval': -1},
])
def test_validation(overrides):
    with pytest.raises(ValueError):
        load_proxy_config(None, **overrides)


def test_cli_port_argument():
    from server import parse_args
    assert parse_args([]).port is None
    assert parse_args(['1080', '--host', '127.0.0.1']).port == 1080


def test_cli_rejects_invalid_port(tmp_path):
    from server import main
    assert main(['70000', '--config', str(tmp_path / 'missing.yaml')]) == 1
