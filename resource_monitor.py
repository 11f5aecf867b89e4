"""
资源监控模块 - 定期记录代理进程的资源使用情况

功能:
1. 记录进程的内存、CPU、线程数、文件描述符数和 TCP 连接数
2. 记录活动会话数和 asyncio 任务数
3. 超过阈值时输出告警，用于发现套接字泄漏
"""

import asyncio
import logging
import time
from typing import Dict, List, Optional

import psutil

logger = logging.getLogger('socks5-proxy.monitor')

DEFAULT_THRESHOLDS = {
    'memory_mb': 500,
    'cpu_percent': 80,
    'num_fds': 4096,
    'connections': 2000,
    'sessions': 1000,
}


class ResourceMonitor:
    """资源监控器"""

    def __init__(self, server=None, interval: float = 60, thresholds: Optional[Dict] = None):
        """
        初始化资源监控器

        参数:
            server: SOCKS5Server 实例（可选），用于读取活动会话数
            interval: 检查间隔（秒）
            thresholds: 告警阈值，覆盖 DEFAULT_THRESHOLDS 中的同名项
        """
        self.server = server
        self.interval = interval
        self.thresholds = {**DEFAULT_THRESHOLDS, **(thresholds or {})}
        self.process = psutil.Process()

    def snapshot(self) -> Dict:
        """
        获取当前资源使用情况

        返回:
            Dict: 统计信息
        """
        with self.process.oneshot():
            stats = {
                'timestamp': time.time(),
                'memory_mb': self.process.memory_info().rss / 1024 / 1024,
                'cpu_percent': self.process.cpu_percent(interval=None),
                'num_threads': self.process.num_threads(),
                'num_fds': self.process.num_fds() if hasattr(self.process, 'num_fds') else 0,
            }
        try:
            stats['connections'] = len(self.process.net_connections(kind='tcp'))
        except psutil.AccessDenied:
            stats['connections'] = 0

        stats['sessions'] = len(self.server.active_sessions) if self.server else 0
        try:
            stats['tasks'] = len(asyncio.all_tasks())
        except RuntimeError:
            # 不在事件循环中调用
            stats['tasks'] = 0
        return stats

    def check_thresholds(self, stats: Dict) -> List[str]:
        """
        检查是否超过告警阈值

        返回:
            List[str]: 告警列表
        """
        warnings = []
        for key, limit in self.thresholds.items():
            value = stats.get(key)
            if value is not None and value > limit:
                warnings.append(f"{key}: {value:.1f} > {limit}" if isinstance(value, float)
                                else f"{key}: {value} > {limit}")
        return warnings

    def monitor_once(self) -> Dict:
        """执行一次检查并记录日志"""
        stats = self.snapshot()
        stats['warnings'] = self.check_thresholds(stats)

        logger.info(
            f"资源: memory={stats['memory_mb']:.1f}MB, cpu={stats['cpu_percent']:.1f}%, "
            f"threads={stats['num_threads']}, fds={stats['num_fds']}, "
            f"connections={stats['connections']}, sessions={stats['sessions']}, tasks={stats['tasks']}"
        )
        for warning in stats['warnings']:
            logger.warning(f"资源告警 - {warning}")
        return stats

    async def run(self):
        """持续监控，直到任务被取消"""
        logger.info(f"资源监控已启动: 间隔 {self.interval} 秒")
        while True:
            await asyncio.sleep(self.interval)
            self.monitor_once()
