"""
SOCKS5 协议包

本包提供了 SOCKS5 代理的协议定义和实现，包括：
- 协议常量、地址类型和应答码
- 地址字段解码和应答帧编码
- 会话错误类型

使用示例：
    from protocol import ReplyCode, encode_reply, decode_address_bytes

    # 编码成功应答
    frame = encode_reply(5, ReplyCode.SUCCEEDED, ('127.0.0.1', 80))

    # 解码地址字段
    address, remaining = decode_address_bytes(b'\\x01\\x7f\\x00\\x00\\x01\\x00\\x50')
"""

from .constants import (
    SOCKS5,
    AddressType,
    ReplyCode,
)

from .core import (
    REPLY_SIZE,
    UNSPECIFIED_ADDRESS,
    DestinationAddress,
    read_exact,
    decode_address,
    decode_address_bytes,
    encode_address,
    encode_reply,
    encode_method_selection,
)

from .errors import (
    SOCKSError,
    HandshakeError,
    MalformedFrameError,
    UnsupportedVersionError,
    CommandNotAllowedError,
    AddressTypeNotSupportedError,
    DialError,
    ResolutionError,
    ReplyWriteError,
)
