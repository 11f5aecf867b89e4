"""
SOCKS5 代理 - 地址编解码模块

功能概述:
本模块负责 SOCKS5 请求中地址字段的解码，以及应答帧的编码。
编解码函数被握手协商器和应答帧构造器共享。

请求中的地址字段:
┌─────────┬──────────────────────────────┬─────────────┐
│ ATYP    │ 地址                         │ 端口        │
│ 1 字节  │ IPv4: 4 字节                 │ 2 字节      │
│         │ 域名: 1 字节长度 + 域名字节  │ 大端序      │
└─────────┴──────────────────────────────┴─────────────┘

应答帧:
┌─────────┬─────────┬─────────┬─────────┬─────────────┬─────────────┐
│ 版本    │ 应答码  │ 保留    │ ATYP=1  │ IPv4 地址   │ 端口        │
│ 1 字节  │ 1 字节  │ 1 字节  │ 1 字节  │ 4 字节      │ 2 字节      │
└─────────┴─────────┴─────────┴─────────┴─────────────┴─────────────┘

应答帧只能携带 IPv4 地址。编码非 IPv4 地址会抛出
AddressTypeNotSupportedError，而不是生成长度错误的帧。
"""

import asyncio
import ipaddress
import logging
import socket
import struct
from dataclasses import dataclass
from typing import Optional, Tuple

from .constants import SOCKS5, AddressType, ReplyCode
from .errors import AddressTypeNotSupportedError, MalformedFrameError

logger = logging.getLogger('socks5-proxy.protocol')

PORT_FORMAT = '>H'
REPLY_FORMAT = '>BBBB4sH'
REPLY_SIZE = struct.calcsize(REPLY_FORMAT)

UNSPECIFIED_ADDRESS = ('0.0.0.0', 0)


# ============================================================================
# 目标地址
# ============================================================================

@dataclass(frozen=True)
class DestinationAddress:
    """
    客户端请求的目标地址

    IPv4 地址解码后即为具体的套接字地址；域名需要在拨号前
    交给 DNS 解析器解析。

    Attributes:
        host: IPv4 地址字符串或域名
        port: 目标端口（0-65535）
        atyp: 地址类型
    """
    host: str
    port: int
    atyp: AddressType = AddressType.IPV4

    @property
    def is_resolved(self) -> bool:
        """是否已经是具体的 IP 地址（无需 DNS 解析）"""
        return self.atyp != AddressType.DOMAIN

    def __str__(self) -> str:
        return f"{self.host}:{self.port}"


# ============================================================================
# 解码
# ============================================================================

async def read_exact(reader: asyncio.StreamReader, size: int, field: str) -> bytes:
    """
    从流中精确读取 size 个字节

    Raises:
        MalformedFrameError: 对端在读取完成之前关闭或重置了连接
    """
    try:
        return await reader.readexactly(size)
    except asyncio.IncompleteReadError as e:
        raise MalformedFrameError(
            f"读取{field}时连接提前关闭: 需要 {size} 字节，只收到 {len(e.partial)} 字节"
        ) from e
    except ConnectionError as e:
        raise MalformedFrameError(f"读取{field}时连接中断: {e}") from e


def _decode_domain(raw: bytes) -> str:
    if not raw:
        raise MalformedFrameError("域名长度为 0")
    try:
        return raw.decode('utf-8')
    except UnicodeDecodeError as e:
        raise MalformedFrameError(f"域名不是合法的 UTF-8 文本: {raw!r}") from e


def _parse_atyp(value: int) -> AddressType:
    if value not in (SOCKS5.ATYP_IPV4, SOCKS5.ATYP_DOMAIN):
        raise AddressTypeNotSupportedError(value)
    return AddressType(value)


async def decode_address(reader: asyncio.StreamReader, atyp: Optional[int] = None) -> DestinationAddress:
    """
    从流中解码一个目标地址

    如果 atyp 为 None，先读取 1 字节的地址类型字段；否则使用调用方
    已经读取到的地址类型（请求头的第 4 个字节）。

    Args:
        reader: 客户端流读取器
        atyp: 已读取的地址类型（可选）

    Returns:
        DestinationAddress: 解码得到的目标地址

    Raises:
        AddressTypeNotSupportedError: 地址类型不是 IPv4 或域名
        MalformedFrameError: 读取不完整或域名非法
    """
    if atyp is None:
        atyp = (await read_exact(reader, 1, '地址类型'))[0]
    address_type = _parse_atyp(atyp)

    if address_type == AddressType.IPV4:
        host = socket.inet_ntoa(await read_exact(reader, 4, 'IPv4 地址'))
    else:
        length = (await read_exact(reader, 1, '域名长度'))[0]
        host = _decode_domain(await read_exact(reader, length, '域名') if length else b'')

    port = struct.unpack(PORT_FORMAT, await read_exact(reader, 2, '端口'))[0]
    return DestinationAddress(host, port, address_type)


def decode_address_bytes(data: bytes) -> Tuple[DestinationAddress, bytes]:
    """
    从字节缓冲区解码一个目标地址（以 ATYP 字节开头）

    Returns:
        Tuple[DestinationAddress, bytes]: 目标地址和剩余的字节
    """
    if not data:
        raise MalformedFrameError("缺少地址类型字段")
    address_type = _parse_atyp(data[0])
    offset = 1

    if address_type == AddressType.IPV4:
        if len(data) < offset + 4:
            raise MalformedFrameError("IPv4 地址不完整")
        host = socket.inet_ntoa(data[offset:offset + 4])
        offset += 4
    else:
        if len(data) < offset + 1:
            raise MalformedFrameError("缺少域名长度字段")
        length = data[offset]
        offset += 1
        if len(data) < offset + length:
            raise MalformedFrameError("域名不完整")
        host = _decode_domain(data[offset:offset + length])
        offset += length

    if len(data) < offset + 2:
        raise MalformedFrameError("端口不完整")
    port = struct.unpack(PORT_FORMAT, data[offset:offset + 2])[0]
    return DestinationAddress(host, port, address_type), data[offset + 2:]


# ============================================================================
# 编码
# ============================================================================

def _as_ipv4(host: str) -> ipaddress.IPv4Address:
    try:
        ip = ipaddress.ip_address(host)
    except ValueError:
        raise AddressTypeNotSupportedError(message=f"应答地址不是 IP 地址: {host!r}")

    if isinstance(ip, ipaddress.IPv6Address):
        if ip.ipv4_mapped is None:
            raise AddressTypeNotSupportedError(
                AddressType.IPV6, f"应答帧无法携带 IPv6 地址: {host}"
            )
        ip = ip.ipv4_mapped
    return ip


def encode_address(host: str, port: int) -> bytes:
    """
    编码地址字段（ATYP + 地址 + 端口）

    IPv4 字符串编码为 ATYP=0x01，其他字符串按域名编码为 ATYP=0x03。
    """
    try:
        packed = ipaddress.IPv4Address(host).packed
        return bytes([SOCKS5.ATYP_IPV4]) + packed + struct.pack(PORT_FORMAT, port)
    except ValueError:
        pass

    raw = host.encode('utf-8')
    if not 0 < len(raw) <= SOCKS5.MAX_DOMAIN_LENGTH:
        raise ValueError(f"域名长度必须在 1-{SOCKS5.MAX_DOMAIN_LENGTH} 字节之间: {len(raw)}")
    return bytes([SOCKS5.ATYP_DOMAIN, len(raw)]) + raw + struct.pack(PORT_FORMAT, port)


def encode_reply(version: int, code: ReplyCode, bound_address: Optional[Tuple[str, int]] = None) -> bytes:
    """
    编码应答帧

    Args:
        version: 协商得到的协议版本
        code: 应答码
        bound_address: (host, port)，为 None 时使用 0.0.0.0:0

    Returns:
        bytes: 10 字节的应答帧

    Raises:
        AddressTypeNotSupportedError: bound_address 不是 IPv4 地址
    """
    host, port = bound_address[:2] if bound_address else UNSPECIFIED_ADDRESS
    ip = _as_ipv4(host)

    frame = struct.pack(
        REPLY_FORMAT,
        version,
        code,
        SOCKS5.RESERVED,
        SOCKS5.ATYP_IPV4,
        ip.packed,
        port
    )
    logger.debug(f"编码应答帧: code={ReplyCode(code).name}, bound={ip}:{port}")
    return frame


def encode_method_selection(version: int = SOCKS5.VERSION, method: int = SOCKS5.AUTH_NONE) -> bytes:
    """编码认证方法选择应答 [version, method]"""
    return bytes([version, method])
