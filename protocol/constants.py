"""
SOCKS5 代理 - 协议常量模块

定义 SOCKS5（RFC 1928）协议中使用的版本号、认证方法、命令、
地址类型和应答码。所有多字节字段使用大端序（网络字节序）。
"""

from enum import IntEnum


# ============================================================================
# SOCKS5 协议常量
# ============================================================================

class SOCKS5:
    """
    SOCKS5 协议常量定义

    本实现只支持 "无需认证" 方法和 CONNECT 命令。
    """
    VERSION = 0x05
    RESERVED = 0x00

    AUTH_NONE = 0x00
    AUTH_GSSAPI = 0x01
    AUTH_USERNAME_PASSWORD = 0x02
    AUTH_NO_ACCEPTABLE = 0xFF

    CMD_CONNECT = 0x01
    CMD_BIND = 0x02
    CMD_UDP_ASSOCIATE = 0x03

    ATYP_IPV4 = 0x01
    ATYP_DOMAIN = 0x03
    ATYP_IPV6 = 0x04

    MAX_DOMAIN_LENGTH = 255


class AddressType(IntEnum):
    """请求和应答帧中的地址类型（ATYP）字段"""
    IPV4 = SOCKS5.ATYP_IPV4
    DOMAIN = SOCKS5.ATYP_DOMAIN
    IPV6 = SOCKS5.ATYP_IPV6


class ReplyCode(IntEnum):
    """
    SOCKS5 应答码

    每个会话只选择一个应答码，并且在中继开始之前最多写入一次。
    """
    SUCCEEDED = 0x00
    GENERAL_FAILURE = 0x01
    NOT_ALLOWED_BY_RULESET = 0x02
    NETWORK_UNREACHABLE = 0x03
    HOST_UNREACHABLE = 0x04
    CONNECTION_REFUSED = 0x05
    TTL_EXPIRED = 0x06
    COMMAND_NOT_SUPPORTED = 0x07
    ADDRESS_TYPE_NOT_SUPPORTED = 0x08
