"""
SOCKS5 代理 - 日志管理模块

日志输出目标: 控制台（TTY 下彩色）、按大小或按天轮转的文件、systemd journal（可选）。
配置来源: config.yaml 的 logging 段，LOG_* 环境变量优先。

会话上下文:
上下文信息保存在 contextvars 中。asyncio 为每个任务复制一份上下文，
因此并发会话各自的 session_id / client / target 互不干扰。
"""

import contextvars
import logging
import logging.handlers
import os
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

try:
    from systemd.journal import JournalHandler
    HAS_JOURNAL = True
except ImportError:
    HAS_JOURNAL = False

from config import load_config

DEFAULT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - [%(context)s] - %(message)s"
DEFAULT_CONTEXT_FIELDS = ["session_id", "client", "target"]
DATE_FORMAT = '%Y-%m-%d %H:%M:%S'

_log_context: contextvars.ContextVar = contextvars.ContextVar('socks5_log_context', default={})


@dataclass
class LogConfig:
    """
    日志配置数据类

    Attributes:
        level: 根日志记录器级别
        log_dir: 日志文件所在目录（启用文件输出时自动创建）
        log_file: 日志文件名
        max_bytes: 按大小轮转时的单文件上限
        backup_count: 轮转后保留的旧文件个数
        rotation_type: size（按大小）、date（每天午夜）或 none
        format_string: logging 格式串，可以引用 %(context)s
        enable_console: 输出到标准输出
        enable_file: 输出到 log_dir/log_file
        enable_journal: 输出到 systemd journal（需要 systemd-python）
        context_fields: 写入 %(context)s 的上下文字段
    """
    level: str = "INFO"
    log_dir: str = "logs"
    log_file: str = "socks5-proxy.log"
    max_bytes: int = 10 * 1024 * 1024  # 10MB
    backup_count: int = 10
    rotation_type: str = "size"
    format_string: str = DEFAULT_FORMAT
    enable_console: bool = True
    enable_file: bool = False
    enable_journal: bool = False
    context_fields: list = None

    def __post_init__(self):
        if self.context_fields is None:
            self.context_fields = list(DEFAULT_CONTEXT_FIELDS)


def _env_bool(name: str, default) -> bool:
    return str(os.getenv(name, default)).lower() == 'true'


class ContextFilter(logging.Filter):
    """
    上下文过滤器

    为日志记录添加当前任务的上下文信息
    """

    def __init__(self, context_fields: list = None):
        super().__init__()
        self.context_fields = context_fields or []

    def filter(self, record):
        context_data = _log_context.get()
        record.context = " | ".join(
            f"{field}={context_data.get(field, '-')}" for field in self.context_fields
        )
        return True


class LogFormatter(logging.Formatter):
    """
    日志格式化器

    保证 %(context)s 总是可用；use_color 为 True 时按级别给级别名着色。
    """

    COLORS = {
        'DEBUG': '\033[36m',      # 青色
        'INFO': '\033[32m',       # 绿色
        'WARNING': '\033[33m',    # 黄色
        'ERROR': '\033[31m',      # 红色
        'CRITICAL': '\033[35m',   # 紫色
    }
    RESET = '\033[0m'

    def __init__(self, fmt=None, datefmt=None, style='%', use_color=False):
        super().__init__(fmt, datefmt, style)
        self.use_color = use_color

    def format(self, record):
        # 未经过 ContextFilter 的记录（例如第三方库直接输出）
        if not hasattr(record, 'context'):
            record.context = "-"

        levelname = record.levelname
        if self.use_color and levelname in self.COLORS:
            record.levelname = f"{self.COLORS[levelname]}{levelname}{self.RESET}"
        try:
            return super().format(record)
        finally:
            record.levelname = levelname


class LoggerManager:
    """
    日志管理器（单例）

    负责创建和替换根日志记录器上的处理器。重复调用 initialize()
    会先移除上一次添加的处理器。
    """

    _instance = None
    _initialized = False

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(self):
        if not self._initialized:
            self.config = None
            self.context_filter = None
            self.handlers = []
            self._initialized = True

    def load_config_from_file(self, config_file: str) -> LogConfig:
        """
        从配置文件的 logging 段加载日志配置，环境变量优先

        Args:
            config_file: 配置文件路径

        Returns:
            LogConfig: 日志配置对象
        """
        log_config = load_config(config_file).get('logging') or {}
        defaults = LogConfig()

        return LogConfig(
            level=os.getenv('LOG_LEVEL', log_config.get('level', defaults.level)),
            log_dir=os.getenv('LOG_DIR', log_config.get('log_dir', defaults.log_dir)),
            log_file=os.getenv('LOG_FILE', log_config.get('log_file', defaults.log_file)),
            max_bytes=int(os.getenv('LOG_MAX_BYTES', log_config.get('max_bytes', defaults.max_bytes))),
            backup_count=int(os.getenv('LOG_BACKUP_COUNT', log_config.get('backup_count', defaults.backup_count))),
            rotation_type=os.getenv('LOG_ROTATION_TYPE', log_config.get('rotation_type', defaults.rotation_type)),
            format_string=os.getenv('LOG_FORMAT', log_config.get('format_string', defaults.format_string)),
            enable_console=_env_bool('LOG_ENABLE_CONSOLE', log_config.get('enable_console', defaults.enable_console)),
            enable_file=_env_bool('LOG_ENABLE_FILE', log_config.get('enable_file', defaults.enable_file)),
            enable_journal=_env_bool('LOG_ENABLE_JOURNAL', log_config.get('enable_journal', defaults.enable_journal)),
            context_fields=log_config.get('context_fields', defaults.context_fields),
        )

    def initialize(self, config: Optional[LogConfig] = None, config_file: Optional[str] = None):
        """
        初始化日志系统

        Args:
            config: 日志配置对象（可选）
            config_file: 配置文件路径（可选）
        """
        if config:
            self.config = config
        elif config_file:
            self.config = self.load_config_from_file(config_file)
        else:
            self.config = LogConfig()

        root_logger = logging.getLogger()
        level = getattr(logging, self.config.level.upper(), logging.INFO)
        root_logger.setLevel(level)

        for handler in self.handlers:
            root_logger.removeHandler(handler)
            handler.close()
        self.handlers = []

        if self.config.enable_console:
            self._add_handler(root_logger, self._console_handler())
        if self.config.enable_file:
            Path(self.config.log_dir).mkdir(parents=True, exist_ok=True)
            self._add_handler(root_logger, self._file_handler())
        if self.config.enable_journal and HAS_JOURNAL:
            self._add_handler(root_logger, JournalHandler())

        self.context_filter = ContextFilter(self.config.context_fields)
        for handler in self.handlers:
            handler.setLevel(level)
            handler.addFilter(self.context_filter)

    def _add_handler(self, logger: logging.Logger, handler: logging.Handler):
        logger.addHandler(handler)
        self.handlers.append(handler)

    def _formatter(self, use_color: bool = False) -> LogFormatter:
        return LogFormatter(self.config.format_string, DATE_FORMAT, use_color=use_color)

    def _console_handler(self) -> logging.Handler:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(self._formatter(use_color=sys.stdout.isatty()))
        return handler

    def _file_handler(self) -> logging.Handler:
        """按 rotation_type 选择文件处理器"""
        path = Path(self.config.log_dir) / self.config.log_file
        rotation = self.config.rotation_type

        if rotation == 'size':
            handler = logging.handlers.RotatingFileHandler(
                path, maxBytes=self.config.max_bytes,
                backupCount=self.config.backup_count, encoding='utf-8')
        elif rotation == 'date':
            handler = logging.handlers.TimedRotatingFileHandler(
                path, when='midnight', backupCount=self.config.backup_count, encoding='utf-8')
        else:
            handler = logging.FileHandler(path, encoding='utf-8')

        handler.setFormatter(self._formatter())
        return handler


def get_logger(name: str) -> logging.Logger:
    """获取日志记录器（便捷函数）"""
    return logging.getLogger(name)


def add_context(**kwargs):
    """
    为当前任务添加上下文信息

    新建字典而不是原地修改，避免影响复制了同一上下文的其他任务。
    """
    _log_context.set({**_log_context.get(), **kwargs})


def clear_context():
    """清除当前任务的上下文信息"""
    _log_context.set({})


def get_context() -> dict:
    """返回当前任务的上下文信息副本"""
    return dict(_log_context.get())


def log_exception(logger: logging.Logger, message: str = "发生异常"):
    """记录异常信息（包含调用栈）"""
    logger.error(message, exc_info=True)
