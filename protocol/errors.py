"""
SOCKS5 代理 - 错误类型模块

功能概述:
本模块定义了代理会话中所有可能出现的错误类型。每个错误类型都携带
一个 reply_code，调度器据此决定（是否以及）向客户端发送哪个应答码。

错误分类:
- HandshakeError: 握手阶段错误（格式错误、版本不支持、命令不支持、
  地址类型不支持），会话立即终止，不发送应答
- DialError: 出站连接错误（无法解析、拒绝连接、不可达），
  发送失败应答后结束会话
- ReplyWriteError: 应答写入失败（客户端已断开），会话静默结束
"""

from .constants import ReplyCode


class SOCKSError(Exception):
    """所有代理错误的基类"""

    reply_code = ReplyCode.GENERAL_FAILURE


# ============================================================================
# 握手错误
# ============================================================================

class HandshakeError(SOCKSError):
    """握手阶段错误，会话在发送应答之前终止"""


class MalformedFrameError(HandshakeError):
    """
    帧格式错误

    读取不完整（客户端提前关闭）或字段内容非法（例如空域名、
    非 UTF-8 域名）时抛出。
    """


class UnsupportedVersionError(HandshakeError):
    """客户端使用的协议版本不是 SOCKS5"""

    def __init__(self, version: int):
        super().__init__(f"不支持的协议版本: {version:#04x}")
        self.version = version


class CommandNotAllowedError(HandshakeError):
    """请求的命令不是 CONNECT（BIND 和 UDP ASSOCIATE 不支持）"""

    reply_code = ReplyCode.COMMAND_NOT_SUPPORTED

    def __init__(self, command: int):
        super().__init__(f"不支持的命令: {command:#04x}")
        self.command = command


class AddressTypeNotSupportedError(HandshakeError):
    """
    地址类型不支持

    在两个位置抛出：解码请求时遇到未知的 ATYP，以及目标只解析出
    IPv6 地址时（应答帧只能携带 IPv4 地址）。
    """

    reply_code = ReplyCode.ADDRESS_TYPE_NOT_SUPPORTED

    def __init__(self, address_type=None, message: str = None):
        if message is None:
            message = f"不支持的地址类型: {address_type!r}"
        super().__init__(message)
        self.address_type = address_type


# ============================================================================
# 出站连接错误
# ============================================================================

class DialError(SOCKSError):
    """出站连接失败"""

    def __init__(self, message: str, reply_code: ReplyCode = ReplyCode.GENERAL_FAILURE):
        super().__init__(message)
        self.reply_code = reply_code


class ResolutionError(DialError):
    """域名解析失败或解析结果为空"""

    def __init__(self, host: str, reason: str = "no such host"):
        super().__init__(f"无法解析 {host}: {reason}", ReplyCode.HOST_UNREACHABLE)
        self.host = host


# ============================================================================
# 应答写入错误
# ============================================================================

class ReplyWriteError(SOCKSError):
    """向客户端写入应答帧失败"""
