"""
代理服务器模块 - 接受连接并驱动会话

每个接受的连接运行在独立的任务中（asyncio.start_server 为每个连接创建任务），
一个慢速或长时间运行的中继不会阻塞新连接的接受和握手。

会话流程:
    握手协商 -> 拨号 -> 发送应答 -> 中继 -> 关闭两个连接

错误处理:
- 握手错误: 记录日志，直接关闭客户端连接，不发送应答
- 拨号错误: 发送失败应答后关闭
- 应答写入错误: 静默结束
- 中继结束: 正常终止，无论原因
- 其他未预期的异常: 在本模块记录并结束该会话，不影响监听和其他会话
"""

import asyncio
import logging
from typing import Dict, List, Optional, Set, Tuple

from config import ProxyConfig
from logger import add_context, clear_context, log_exception
from protocol import (
    AddressType,
    AddressTypeNotSupportedError,
    DialError,
    HandshakeError,
    ReplyCode,
    ReplyWriteError,
)

from .negotiator import HandshakeNegotiator
from .relay import SessionRelay
from .reply import reply_code_for, send_reply
from .resolver import Resolver, dial
from .session import Session, SessionState

logger = logging.getLogger('socks5-proxy')


class SOCKS5Server:
    """
    SOCKS5 代理服务器

    Attributes:
        config: ProxyConfig，代理配置
        resolver: Resolver，DNS 解析器
        stats: dict，会话统计信息

    Example:
        >>> server = SOCKS5Server(ProxyConfig(port=9150))
        >>> asyncio.run(server.serve_forever())
    """

    def __init__(self, config: Optional[ProxyConfig] = None, resolver: Optional[Resolver] = None):
        self.config = config or ProxyConfig()
        self.resolver = resolver or Resolver()
        self.stats = {
            'accepted': 0,
            'succeeded': 0,
            'handshake_failed': 0,
            'dial_failed': 0,
            'reply_failed': 0,
            'relayed': 0,
            'errors': 0,
            'active': 0,
        }
        self._server: Optional[asyncio.AbstractServer] = None
        self._sessions: Dict[int, Session] = {}
        self._tasks: Set[asyncio.Task] = set()
        self._stopped: Optional[asyncio.Event] = None

    @property
    def active_sessions(self) -> List[Session]:
        return list(self._sessions.values())

    @property
    def address(self) -> Optional[Tuple[str, int]]:
        """监听地址（启动后可用，端口为 0 时返回实际分配的端口）"""
        if not self._server or not self._server.sockets:
            return None
        return self._server.sockets[0].getsockname()[:2]

    async def start(self):
        """
        开始监听

        Raises:
            OSError: 无法绑定监听地址
        """
        self._stopped = asyncio.Event()
        self._server = await asyncio.start_server(
            self.handle_client,
            self.config.host,
            self.config.port,
            backlog=self.config.backlog,
            reuse_address=True
        )
        host, port = self.address
        logger.info(f"SOCKS5 代理运行在 {host}:{port}")

    async def serve_forever(self):
        """启动（如果尚未启动）并运行直到 stop() 被调用"""
        if self._server is None:
            await self.start()
        await self._stopped.wait()

    async def stop(self):
        """
        停止服务器

        关闭监听套接字，取消所有活动会话并等待它们通过正常的清理路径关闭连接。
        """
        if self._server is None:
            return
        server, self._server = self._server, None
        server.close()

        tasks = list(self._tasks)
        if tasks:
            logger.info(f"正在关闭 {len(tasks)} 个活动会话")
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)

        await server.wait_closed()
        self._stopped.set()
        logger.info(f"SOCKS5 代理已停止: {self.stats}")

    async def handle_client(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter):
        """
        处理客户端连接

        此方法由 asyncio.start_server 在独立的任务中调用。
        """
        task = asyncio.current_task()
        self._tasks.add(task)
        session = Session(reader, writer)
        self._sessions[session.session_id] = session
        self.stats['accepted'] += 1
        self.stats['active'] = len(self._sessions)

        clear_context()
        add_context(session_id=session.session_id, client=session.client_address)
        logger.debug(f"接受连接: {session.client_address}")

        try:
            await self._serve_session(session)
        except asyncio.CancelledError:
            logger.info("会话被取消")
            raise
        except Exception:
            self.stats['errors'] += 1
            log_exception(logger, "会话处理出现未预期的错误")
        finally:
            await session.close()
            self._sessions.pop(session.session_id, None)
            self.stats['active'] = len(self._sessions)
            self._tasks.discard(task)
            logger.debug(f"会话已关闭: duration={session.duration:.2f}s")

    async def _serve_session(self, session: Session):
        negotiator = HandshakeNegotiator(session.client_reader, session.client_writer)
        try:
            session.version, session.destination = await asyncio.wait_for(
                negotiator.negotiate(),
                timeout=self.config.handshake_timeout
            )
        except asyncio.TimeoutError:
            self.stats['handshake_failed'] += 1
            logger.warning(f"握手超时（{self.config.handshake_timeout}秒）: state={negotiator.state.value}")
            return
        except HandshakeError as e:
            self.stats['handshake_failed'] += 1
            logger.warning(f"握手失败: {e}")
            return

        destination = session.destination
        session.state = SessionState.DIALING
        add_context(target=str(destination))
        logger.info(f"CONNECT {session.client_address} -> {destination}")

        try:
            session.target_reader, session.target_writer = await dial(
                destination,
                timeout=self.config.connect_timeout,
                resolver=self.resolver
            )
        except (DialError, AddressTypeNotSupportedError) as e:
            self.stats['dial_failed'] += 1
            code = reply_code_for(e, self.config.precise_reply_codes)
            logger.warning(f"连接目标失败: {e} -> {code.name}")
            bound = (destination.host, destination.port) if destination.atyp == AddressType.IPV4 else None
            try:
                await self._reply(session, code, bound)
            except ReplyWriteError as write_error:
                logger.debug(str(write_error))
            return

        bound = session.target_writer.get_extra_info('peername')
        try:
            await self._reply(session, ReplyCode.SUCCEEDED, bound)
        except ReplyWriteError as e:
            self.stats['reply_failed'] += 1
            logger.info(f"客户端在应答前断开: {e}")
            return

        self.stats['succeeded'] += 1

        session.state = SessionState.RELAYING
        relay = SessionRelay(
            session.client_reader,
            session.client_writer,
            session.target_reader,
            session.target_writer,
            buffer_size=self.config.buffer_size,
            idle_timeout=self.config.idle_timeout
        )
        try:
            result = await relay.run()
        finally:
            session.bytes_up = relay.stats.bytes_up
            session.bytes_down = relay.stats.bytes_down

        self.stats['relayed'] += 1
        logger.info(
            f"中继结束: reason={result.reason}, up={result.bytes_up}, "
            f"down={result.bytes_down}, duration={session.duration:.2f}s"
        )

    async def _reply(self, session: Session, code: ReplyCode, bound):
        if session.reply_code is not None:
            raise RuntimeError(f"会话 {session.session_id} 已经发送过应答: {session.reply_code.name}")
        session.reply_code = code
        await send_reply(session.client_writer, session.version, code, bound)
