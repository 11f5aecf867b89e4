"""
握手协商模块 - SOCKS5 两步握手

握手流程:
1. 认证方法协商: 读取 [版本, 方法数量 N, 方法 1..N]，应答 [版本, 0x00]
2. 命令请求: 读取 [版本, 命令, 保留, ATYP]，然后解码目标地址

状态机:
    AWAITING_METHODS -> AWAITING_REQUEST -> DECODED
    任何读取或解码错误 -> FAILED（终止状态，不发送应答）

已知限制:
协商器总是选择 "无需认证"（0x00），即使客户端只提供了需要认证的方法。
遵循协议的客户端可能会因此断开连接。
"""

import asyncio
import logging
from enum import Enum
from typing import Tuple

from protocol import (
    SOCKS5,
    DestinationAddress,
    CommandNotAllowedError,
    HandshakeError,
    MalformedFrameError,
    UnsupportedVersionError,
    decode_address,
    encode_method_selection,
    read_exact,
)

logger = logging.getLogger('socks5-proxy.negotiator')


class NegotiationState(Enum):
    """握手状态"""
    AWAITING_METHODS = "awaiting-methods"
    AWAITING_REQUEST = "awaiting-request"
    DECODED = "decoded"
    FAILED = "failed"


class HandshakeNegotiator:
    """
    SOCKS5 握手协商器

    在单个客户端连接上顺序执行两步握手。每个会话创建一个实例，
    实例之间不共享状态。

    Attributes:
        reader: 客户端流读取器
        writer: 客户端流写入器
        state: 当前握手状态
        version: 协商得到的协议版本（方法协商完成后设置）
        methods: 客户端提供的认证方法列表
    """

    def __init__(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter):
        self.reader = reader
        self.writer = writer
        self.state = NegotiationState.AWAITING_METHODS
        self.version = None
        self.methods = b''

    async def negotiate(self) -> Tuple[int, DestinationAddress]:
        """
        执行完整握手

        Returns:
            Tuple[int, DestinationAddress]: 协议版本和目标地址

        Raises:
            HandshakeError: 任何握手错误，调用方应直接关闭连接而不发送应答
        """
        try:
            version = await self.select_method()
            destination = await self.read_request()
        except HandshakeError:
            self.state = NegotiationState.FAILED
            raise
        except (ConnectionError, OSError) as e:
            self.state = NegotiationState.FAILED
            raise MalformedFrameError(f"握手过程中连接中断: {e}") from e
        return version, destination

    async def select_method(self) -> int:
        """
        认证方法协商

        读取客户端提供的方法列表，总是应答 "无需认证"。

        Returns:
            int: 协议版本
        """
        self._expect(NegotiationState.AWAITING_METHODS)

        version, nmethods = await read_exact(self.reader, 2, '方法协商头')
        if version != SOCKS5.VERSION:
            raise UnsupportedVersionError(version)

        self.methods = await read_exact(self.reader, nmethods, '认证方法列表') if nmethods else b''
        if SOCKS5.AUTH_NONE not in self.methods:
            logger.warning(
                f"客户端未提供无需认证方法 (methods={list(self.methods)})，仍然选择无需认证"
            )

        self.writer.write(encode_method_selection(version, SOCKS5.AUTH_NONE))
        await self.writer.drain()

        self.version = version
        self.state = NegotiationState.AWAITING_REQUEST
        logger.debug(f"方法协商完成: version={version}, methods={list(self.methods)}")
        return version

    async def read_request(self) -> DestinationAddress:
        """
        读取命令请求并解码目标地址

        Returns:
            DestinationAddress: 目标地址

        Raises:
            CommandNotAllowedError: 命令不是 CONNECT
            AddressTypeNotSupportedError: 地址类型不是 IPv4 或域名
        """
        self._expect(NegotiationState.AWAITING_REQUEST)

        version, command, _, atyp = await read_exact(self.reader, 4, '请求头')
        if version != SOCKS5.VERSION:
            raise UnsupportedVersionError(version)
        if command != SOCKS5.CMD_CONNECT:
            raise CommandNotAllowedError(command)

        destination = await decode_address(self.reader, atyp)
        self.state = NegotiationState.DECODED
        logger.debug(f"请求解码完成: CONNECT {destination}")
        return destination

    def _expect(self, state: NegotiationState):
        if self.state != state:
            raise RuntimeError(f"握手状态错误: 期望 {state.value}，当前 {self.state.value}")
