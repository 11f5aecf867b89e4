"""
SOCKS5 代理 - 配置管理模块
加载 YAML 配置文件，管理代理服务器配置。

功能概述:
本模块提供了配置管理功能，包括：
1. 代理服务器配置数据类
2. YAML 格式配置文件的加载
3. 命令行参数覆盖
4. 配置校验

配置文件格式:
- 默认文件: config.yaml（可选，不存在时使用默认值）
- proxy 段: 代理服务器配置
- logging 段: 日志配置（由 logger 模块读取）

优先级: 命令行参数 > 配置文件 > 默认值
"""

import logging
from dataclasses import dataclass, fields
from typing import Any, Dict, Optional

import yaml

logger = logging.getLogger('socks5-proxy.config')

DEFAULT_PORT = 9150


# ============================================================================
# 配置数据类
# ============================================================================

@dataclass
class ProxyConfig:
    """
    代理服务器配置数据类

    Attributes:
        host: 监听地址（默认: "0.0.0.0"）
        port: 监听端口（默认: 9150）
        backlog: 监听队列长度（默认: 128）
        handshake_timeout: 握手超时（秒，None 表示不限制，默认: 30）
        connect_timeout: 出站连接超时（秒，None 表示使用系统默认，默认: 10）
        idle_timeout: 中继空闲超时（秒，None 表示不限制，默认: 300）
        buffer_size: 中继读取缓冲区大小（字节，默认: 4096）
        precise_reply_codes: 出站连接失败时是否使用具体的应答码
            （默认: False，一律使用 GENERAL_FAILURE）
        monitor_interval: 资源监控间隔（秒，0 表示禁用，默认: 0）
    """
    host: str = "0.0.0.0"
    port: int = DEFAULT_PORT
    backlog: int = 128
    handshake_timeout: Optional[float] = 30.0
    connect_timeout: Optional[float] = 10.0
    idle_timeout: Optional[float] = 300.0
    buffer_size: int = 4096
    precise_reply_codes: bool = False
    monitor_interval: float = 0

    def validate(self):
        """
        校验配置

        Raises:
            ValueError: 配置项取值非法
        """
        if not 0 <= self.port <= 65535:
            raise ValueError(f"端口必须在 0-65535 之间: {self.port}")
        if self.backlog <= 0:
            raise ValueError(f"backlog 必须为正数: {self.backlog}")
        if self.buffer_size <= 0:
            raise ValueError(f"buffer_size 必须为正数: {self.buffer_size}")
        for name in ('handshake_timeout', 'connect_timeout', 'idle_timeout'):
            value = getattr(self, name)
            if value is not None and value <= 0:
                raise ValueError(f"{name} 必须为正数或 null: {value}")
        if self.monitor_interval < 0:
            raise ValueError(f"monitor_interval 不能为负数: {self.monitor_interval}")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ProxyConfig':
        """从字典创建配置，忽略未知字段"""
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            logger.warning(f"忽略未知的配置项: {', '.join(sorted(unknown))}")
        return cls(**{k: v for k, v in data.items() if k in known})


# ============================================================================
# 配置文件管理函数
# ============================================================================

def load_config(config_file: str) -> Dict[str, Any]:
    """
    加载配置文件

    从 YAML 格式的配置文件中加载配置数据

    Args:
        config_file: 配置文件路径

    Returns:
        Dict[str, Any]: 配置数据字典，如果文件不存在或格式错误则返回空字典
    """
    try:
        with open(config_file, 'r', encoding='utf-8') as f:
            return yaml.safe_load(f) or {}
    except FileNotFoundError:
        return {}
    except yaml.YAMLError as e:
        logger.warning(f"配置文件格式错误: {e}")
        return {}


def load_proxy_config(config_file: Optional[str] = None, **overrides) -> ProxyConfig:
    """
    加载代理服务器配置

    Args:
        config_file: 配置文件路径（可选）
        **overrides: 覆盖配置文件的值（通常来自命令行），值为 None 的项被忽略

    Returns:
        ProxyConfig: 校验过的配置对象

    Raises:
        ValueError: 配置项取值非法
    """
    data = load_config(config_file) if config_file else {}
    proxy_conf = dict(data.get('proxy') or {})
    proxy_conf.update({k: v for k, v in overrides.items() if v is not None})

    config = ProxyConfig.from_dict(proxy_conf)
    config.validate()
    return config
