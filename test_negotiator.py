"""
握手协商测试

使用内存中的 StreamReader 和记录写入内容的写入器驱动协商器状态机。
"""

import asyncio

import pytest

from protocol import (
    AddressType,
    AddressTypeNotSupportedError,
    CommandNotAllowedError,
    DestinationAddress,
    MalformedFrameError,
    UnsupportedVersionError,
)
from proxy.negotiator import HandshakeNegotiator, NegotiationState


class RecordingWriter:
    """记录所有写入字节的写入器"""

    def __init__(self):
        self.data = bytearray()

    def write(self, data):
        self.data.extend(data)

    async def drain(self):
        pass

    def get_extra_info(self, name, default=None):
        return default


def negotiate(data: bytes):
    """
    用给定的客户端字节运行一次握手

    返回 (结果或异常, 写入客户端的字节, 最终状态)
    """
    async def run():
        reader = asyncio.StreamReader()
        reader.feed_data(data)
        reader.feed_eof()
        writer = RecordingWriter()
        negotiator = HandshakeNegotiator(reader, writer)
        try:
            result = await negotiator.negotiate()
        except Exception as e:
            result = e
        return result, bytes(writer.data), negotiator.state
    return asyncio.run(run())


CONNECT_LOCALHOST_80 = bytes.fromhex('05010001 7f000001 0050'.replace(' ', ''))


def test_connect_ipv4():
    result, written, state = negotiate(b'\x05\x01\x00' + CONNECT_LOCALHOST_80)
    assert result == (5, DestinationAddress('127.0.0.1', 80, AddressType.IPV4))
    assert written == b'\x05\x00'
    assert state == NegotiationState.DECODED


def test_connect_domain():
    name = b'nonexistent.invalid'
    request = b'\x05\x01\x00\x03' + bytes([len(name)]) + name + b'\x00\x50'
    result, written, state = negotiate(b'\x05\x01\x00' + request)
    assert result == (5, DestinationAddress('nonexistent.invalid', 80, AddressType.DOMAIN))
    assert state == NegotiationState.DECODED


@pytest.mark.parametrize('methods', [
    b'',
    b'\x00',
    b'\x02',
    b'\x01\x02',
    b'\x02\x00\x80',
    bytes(range(256))[:255],
])
def test_method_selection_always_no_auth(methods):
    result, written, _ = negotiate(b'\x05' + bytes([len(methods)]) + methods + CONNECT_LOCALHOST_80)
    assert written == b'\x05\x00'
    assert not isinstance(result, Exception)


@pytest.mark.parametrize('command', [0x00, 0x02, 0x03, 0x04, 0xff])
def test_non_connect_command_is_rejected_without_reply(command):
    request = bytes([0x05, command, 0x00, 0x01, 127, 0, 0, 1, 0, 80])
    result, written, state = negotiate(b'\x05\x01\x00' + request)
    assert isinstance(result, CommandNotAllowedError)
    assert result.command == command
    # 只有方法协商应答，没有命令应答
    assert written == b'\x05\x00'
    assert state == NegotiationState.FAILED


def test_unsupported_address_type_without_reply():
    request = b'\x05\x01\x00\x04' + b'\x00' * 15 + b'\x01' + b'\x00\x50'
    result, written, state = negotiate(b'\x05\x01\x00' + request)
    assert isinstance(result, AddressTypeNotSupportedError)
    assert written == b'\x05\x00'
    assert state == NegotiationState.FAILED


def test_socks4_version_is_rejected_before_reply():
    result, written, state = negotiate(b'\x04\x01\x00\x50\x7f\x00\x00\x01\x00')
    assert isinstance(result, UnsupportedVersionError)
    assert written == b''
    assert state == NegotiationState.FAILED


def test_request_version_mismatch():
    result, _, _ = negotiate(b'\x05\x01\x00' + b'\x04' + CONNECT_LOCALHOST_80[1:])
    assert isinstance(result, UnsupportedVersionError)


@pytest.mark.parametrize('data', [
    b'',
    b'\x05',
    b'\x05\x03\x00',
    b'\x05\x01\x00\x05\x01',
    b'\x05\x01\x00' + CONNECT_LOCALHOST_80[:-1],
])
def test_truncated_handshake(data):
    result, _, state = negotiate(data)
    assert isinstance(result, MalformedFrameError)
    assert state == NegotiationState.FAILED


def test_states_must_run_in_order():
    async def run():
        negotiator = HandshakeNegotiator(asyncio.StreamReader(), RecordingWriter())
        with pytest.raises(RuntimeError):
            await negotiator.read_request()
    asyncio.run(run())
