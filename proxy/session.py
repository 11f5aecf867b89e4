"""
会话模块 - 单个客户端的代理会话

此模块定义了会话数据类。每个会话独占一个客户端连接和（拨号成功后的）
一个目标连接，会话之间不共享任何可变状态。
"""

import asyncio
import itertools
import logging
import socket
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from protocol import DestinationAddress, ReplyCode

logger = logging.getLogger('socks5-proxy.session')

_session_ids = itertools.count(1)


class SessionState(Enum):
    """会话生命周期状态"""
    NEGOTIATING = "negotiating"
    DIALING = "dialing"
    RELAYING = "relaying"
    CLOSED = "closed"


@dataclass
class Session:
    """
    代理会话数据类

    Attributes:
        client_reader: 客户端流读取器
        client_writer: 客户端流写入器
        session_id: 会话唯一标识符（进程内递增）
        target_reader: 目标流读取器（拨号成功前为 None）
        target_writer: 目标流写入器（拨号成功前为 None）
        version: 协商得到的协议版本字节
        destination: 客户端请求的目标地址
        reply_code: 已发送给客户端的应答码（未发送为 None）
        state: 会话状态
        started_at: 会话创建时间
        bytes_up: 客户端 -> 目标 的字节数
        bytes_down: 目标 -> 客户端 的字节数

    Lifecycle:
        1. 接受连接时创建（NEGOTIATING）
        2. 握手成功后填充 version 和 destination（DIALING）
        3. 拨号成功后填充 target_reader / target_writer（RELAYING）
        4. close() 关闭两个连接（CLOSED）
    """
    client_reader: asyncio.StreamReader
    client_writer: asyncio.StreamWriter
    session_id: int = field(default_factory=lambda: next(_session_ids))
    target_reader: Optional[asyncio.StreamReader] = None
    target_writer: Optional[asyncio.StreamWriter] = None
    version: Optional[int] = None
    destination: Optional[DestinationAddress] = None
    reply_code: Optional[ReplyCode] = None
    state: SessionState = SessionState.NEGOTIATING
    started_at: float = field(default_factory=time.monotonic)
    bytes_up: int = 0
    bytes_down: int = 0

    @property
    def client_address(self) -> str:
        peer = self.client_writer.get_extra_info('peername')
        return f"{peer[0]}:{peer[1]}" if peer else "unknown"

    @property
    def duration(self) -> float:
        return time.monotonic() - self.started_at

    async def close(self):
        """
        关闭会话的所有连接

        这是会话唯一的清理入口：无论成功、失败、中继结束还是进程关闭，
        都通过这里无条件地双向关闭两个套接字。重复调用是安全的。
        """
        if self.state == SessionState.CLOSED:
            return
        self.state = SessionState.CLOSED

        for name, writer in (('target', self.target_writer), ('client', self.client_writer)):
            if writer is not None:
                await _shutdown_writer(writer, f"session={self.session_id} {name}")

        self.target_reader = None
        self.target_writer = None


async def _shutdown_writer(writer: asyncio.StreamWriter, label: str):
    sock = writer.get_extra_info('socket')
    if sock is not None:
        try:
            sock.shutdown(socket.SHUT_RDWR)
        except OSError as e:
            # 对端已经关闭时 shutdown 返回 ENOTCONN
            logger.debug(f"{label} shutdown: {e}")

    writer.close()
    try:
        await writer.wait_closed()
    except (ConnectionError, OSError) as e:
        logger.debug(f"{label} wait_closed: {e}")
