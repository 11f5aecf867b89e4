"""
中继模块 - 在两个已连接的套接字之间双向转发字节

实现方式:
事件循环的选择器（epoll/kqueue）就是就绪多路复用器，所有套接字都处于非阻塞模式。
每一侧的 "读就绪关注" 表示为该侧一个未完成的 read(buffer_size) 任务：

    1. 为两侧各注册一个读任务
    2. 等待至少一个读任务完成（可选空闲超时）
    3. 对每个完成的读任务:
       - 读到 0 字节: 该侧已关闭，整个会话结束（不支持半双工继续）
       - 读到数据: 立即完整写入另一侧并 drain
       - 读/写错误: 会话结束
    4. 为已处理的一侧重新注册读任务，回到第 2 步

循环结束时取消仍在等待的读任务，另一侧尚未读取的数据被丢弃。
单个协程服务两个方向，不存在固定的轮询顺序，任一方向都不会饿死另一方向。
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Dict, Optional

logger = logging.getLogger('socks5-proxy.relay')

DEFAULT_BUFFER_SIZE = 4096

CLIENT = 'client'
TARGET = 'target'


@dataclass
class RelayStats:
    """
    中继统计信息

    Attributes:
        bytes_up: 客户端 -> 目标 的字节数
        bytes_down: 目标 -> 客户端 的字节数
        reason: 结束原因（client-closed, target-closed, client-error,
            target-error, client-stalled, target-stalled, idle-timeout）
    """
    bytes_up: int = 0
    bytes_down: int = 0
    reason: str = ''


class _Side:
    __slots__ = ('name', 'reader', 'writer')

    def __init__(self, name: str, reader: asyncio.StreamReader, writer: asyncio.StreamWriter):
        self.name = name
        self.reader = reader
        self.writer = writer


class SessionRelay:
    """
    会话中继

    纯字节泵，不理解任何上层协议。每个会话一个实例。

    Attributes:
        buffer_size: 单次读取的最大字节数
        idle_timeout: 空闲超时（秒），None 表示不限制
        stats: 中继统计信息
    """

    def __init__(
        self,
        client_reader: asyncio.StreamReader,
        client_writer: asyncio.StreamWriter,
        target_reader: asyncio.StreamReader,
        target_writer: asyncio.StreamWriter,
        buffer_size: int = DEFAULT_BUFFER_SIZE,
        idle_timeout: Optional[float] = None
    ):
        self.client = _Side(CLIENT, client_reader, client_writer)
        self.target = _Side(TARGET, target_reader, target_writer)
        self.buffer_size = buffer_size
        self.idle_timeout = idle_timeout
        self.stats = RelayStats()
        self._pending: Dict[asyncio.Task, _Side] = {}

    def _arm(self, side: _Side):
        task = asyncio.ensure_future(side.reader.read(self.buffer_size))
        self._pending[task] = side

    def _peer(self, side: _Side) -> _Side:
        return self.target if side is self.client else self.client

    async def run(self) -> RelayStats:
        """
        运行中继直到任一侧关闭、出错或空闲超时

        Returns:
            RelayStats: 中继统计信息，reason 说明结束原因
        """
        self._arm(self.client)
        self._arm(self.target)

        try:
            while not self.stats.reason:
                done, _ = await asyncio.wait(
                    self._pending,
                    timeout=self.idle_timeout,
                    return_when=asyncio.FIRST_COMPLETED
                )
                if not done:
                    self.stats.reason = 'idle-timeout'
                    logger.debug(f"中继空闲超时（{self.idle_timeout}秒）")
                    break

                # 先处理客户端一侧，保证同一轮内的处理顺序确定
                for task in sorted(done, key=lambda t: self._pending[t] is not self.client):
                    side = self._pending.pop(task)
                    if await self._service(side, task) and not self.stats.reason:
                        self._arm(side)
        finally:
            await self._abandon_pending()

        logger.debug(
            f"中继结束: reason={self.stats.reason}, "
            f"up={self.stats.bytes_up}, down={self.stats.bytes_down}"
        )
        return self.stats

    async def _service(self, side: _Side, task: asyncio.Task) -> bool:
        """处理一个就绪的读任务，返回是否应该继续关注该侧"""
        try:
            data = task.result()
        except (ConnectionError, OSError) as e:
            logger.debug(f"{side.name} 读取错误: {e}")
            self._finish(f'{side.name}-error')
            return False

        if not data:
            logger.debug(f"{side.name} 关闭连接（读取到空数据）")
            self._finish(f'{side.name}-closed')
            return False

        peer = self._peer(side)
        try:
            peer.writer.write(data)
            # 对端停止读取时，写缓冲区排空同样受空闲超时约束
            await asyncio.wait_for(peer.writer.drain(), timeout=self.idle_timeout)
        except asyncio.TimeoutError:
            logger.debug(f"{peer.name} 停止读取，写入阻塞超过 {self.idle_timeout} 秒")
            self._finish(f'{peer.name}-stalled')
            return False
        except (ConnectionError, OSError) as e:
            logger.debug(f"{peer.name} 写入错误: {e}")
            self._finish(f'{peer.name}-error')
            return False

        if side is self.client:
            self.stats.bytes_up += len(data)
        else:
            self.stats.bytes_down += len(data)
        logger.debug(f"转发 {side.name} -> {peer.name}: {len(data)} 字节")
        return True

    def _finish(self, reason: str):
        if not self.stats.reason:
            self.stats.reason = reason

    async def _abandon_pending(self):
        tasks = list(self._pending)
        self._pending.clear()
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
