"""
应答模块 - 构造并发送 SOCKS5 应答帧
"""

import asyncio
import logging
from typing import Optional, Tuple

from protocol import (
    AddressTypeNotSupportedError,
    ReplyCode,
    ReplyWriteError,
    SOCKSError,
    encode_reply,
)

logger = logging.getLogger('socks5-proxy.reply')


def reply_code_for(exc: SOCKSError, precise: bool = False) -> ReplyCode:
    """
    为出站连接错误选择应答码

    地址类型错误总是使用 ADDRESS_TYPE_NOT_SUPPORTED；其他错误默认使用
    GENERAL_FAILURE，precise 为 True 时使用错误自带的具体应答码。
    """
    if isinstance(exc, AddressTypeNotSupportedError):
        return ReplyCode.ADDRESS_TYPE_NOT_SUPPORTED
    if precise:
        return exc.reply_code
    return ReplyCode.GENERAL_FAILURE


async def send_reply(
    writer: asyncio.StreamWriter,
    version: int,
    code: ReplyCode,
    bound_address: Optional[Tuple[str, int]] = None
):
    """
    发送应答帧并等待写缓冲区清空

    Raises:
        ReplyWriteError: 客户端已断开，写入失败（不重试）
    """
    frame = encode_reply(version, code, bound_address)
    try:
        writer.write(frame)
        await writer.drain()
    except (ConnectionError, OSError) as e:
        raise ReplyWriteError(f"发送应答失败: {e}") from e
    logger.debug(f"已发送应答: {ReplyCode(code).name}")
