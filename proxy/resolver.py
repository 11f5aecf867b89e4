"""
出站连接模块 - 目标地址解析和拨号

DNS 解析通过事件循环的 getaddrinfo 完成（在线程池中执行，不阻塞其他会话）。

地址族策略:
应答帧只能携带 IPv4 地址，因此解析结果优先使用 IPv4；如果域名只解析出
IPv6 地址，在拨号阶段以 AddressTypeNotSupportedError 拒绝。
"""

import asyncio
import errno
import logging
import socket
from typing import Optional, Tuple

from protocol import (
    AddressType,
    AddressTypeNotSupportedError,
    DestinationAddress,
    DialError,
    ReplyCode,
    ResolutionError,
)

logger = logging.getLogger('socks5-proxy.resolver')

_ERRNO_REPLY_CODES = {
    errno.ECONNREFUSED: ReplyCode.CONNECTION_REFUSED,
    errno.ENETUNREACH: ReplyCode.NETWORK_UNREACHABLE,
    errno.EHOSTUNREACH: ReplyCode.HOST_UNREACHABLE,
    errno.ETIMEDOUT: ReplyCode.HOST_UNREACHABLE,
}


class Resolver:
    """将目标地址解析为具体的 IPv4 套接字地址"""

    async def getaddrinfo(self, host: str, port: int):
        loop = asyncio.get_running_loop()
        return await loop.getaddrinfo(host, port, type=socket.SOCK_STREAM)

    async def resolve(self, destination: DestinationAddress) -> Tuple[str, int]:
        """
        解析目标地址

        Args:
            destination: 目标地址

        Returns:
            Tuple[str, int]: (IPv4 地址, 端口)

        Raises:
            ResolutionError: 域名不存在或解析结果为空
            AddressTypeNotSupportedError: 只解析出 IPv6 地址
        """
        if destination.atyp == AddressType.IPV4:
            return destination.host, destination.port

        try:
            infos = await self.getaddrinfo(destination.host, destination.port)
        except socket.gaierror as e:
            raise ResolutionError(destination.host, e.strerror or str(e)) from e
        except UnicodeError as e:
            raise ResolutionError(destination.host, f"非法域名: {e}") from e

        if not infos:
            raise ResolutionError(destination.host, "empty result")

        for family, _, _, _, sockaddr in infos:
            if family == socket.AF_INET:
                logger.debug(f"解析 {destination.host} -> {sockaddr[0]}")
                return sockaddr[0], destination.port

        raise AddressTypeNotSupportedError(
            AddressType.IPV6, f"{destination.host} 只解析出 IPv6 地址"
        )


def _dial_error_code(exc: OSError) -> ReplyCode:
    if isinstance(exc, ConnectionRefusedError):
        return ReplyCode.CONNECTION_REFUSED
    return _ERRNO_REPLY_CODES.get(exc.errno, ReplyCode.GENERAL_FAILURE)


async def dial(
    destination: DestinationAddress,
    timeout: Optional[float] = None,
    resolver: Optional[Resolver] = None
) -> Tuple[asyncio.StreamReader, asyncio.StreamWriter]:
    """
    建立到目标地址的 TCP 连接

    Args:
        destination: 目标地址
        timeout: 连接超时（秒），None 表示使用系统默认
        resolver: DNS 解析器（默认 Resolver()）

    Returns:
        tuple: (reader, writer)

    Raises:
        DialError: 解析或连接失败
        AddressTypeNotSupportedError: 目标只有 IPv6 地址
    """
    resolver = resolver or Resolver()
    host, port = await resolver.resolve(destination)

    try:
        return await asyncio.wait_for(asyncio.open_connection(host, port), timeout=timeout)
    except asyncio.TimeoutError as e:
        raise DialError(f"连接 {host}:{port} 超时（{timeout}秒）", ReplyCode.HOST_UNREACHABLE) from e
    except OSError as e:
        raise DialError(f"连接 {host}:{port} 失败: {e}", _dial_error_code(e)) from e
