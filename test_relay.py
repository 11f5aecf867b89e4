"""
中继测试

通过两对本地套接字（客户端 <-> 代理，代理 <-> 目标）运行 SessionRelay。
"""

import asyncio
import os
import socket

from proxy.relay import SessionRelay


async def _stream_pair():
    """返回两端都包装为 asyncio 流的一对已连接套接字"""
    a, b = socket.socketpair()
    a_streams = await asyncio.open_connection(sock=a)
    b_streams = await asyncio.open_connection(sock=b)
    return a_streams, b_streams


async def _setup(**kwargs):
    (app_r, app_w), (cp_r, cp_w) = await _stream_pair()
    (tp_r, tp_w), (dst_r, dst_w) = await _stream_pair()
    relay = SessionRelay(cp_r, cp_w, tp_r, tp_w, **kwargs)
    task = asyncio.create_task(relay.run())
    return relay, task, (app_r, app_w), (dst_r, dst_w), (cp_w, tp_w)


async def _close(*writers):
    for writer in writers:
        writer.close()
    for writer in writers:
        try:
            await writer.wait_closed()
        except (ConnectionError, OSError):
            pass


def test_payload_across_buffer_boundaries_both_directions():
    async def run():
        relay, task, (app_r, app_w), (dst_r, dst_w), proxy_writers = await _setup(buffer_size=4096)

        upstream = os.urandom(4096 * 5 + 123)
        app_w.write(upstream)
        await app_w.drain()
        assert await asyncio.wait_for(dst_r.readexactly(len(upstream)), 5) == upstream

        downstream = os.urandom(4096 * 3 + 1)
        dst_w.write(downstream)
        await dst_w.drain()
        assert await asyncio.wait_for(app_r.readexactly(len(downstream)), 5) == downstream

        app_w.close()
        stats = await asyncio.wait_for(task, 5)
        assert stats.reason == 'client-closed'
        assert stats.bytes_up == len(upstream)
        assert stats.bytes_down == len(downstream)
        await _close(dst_w, *proxy_writers)
    asyncio.run(run())


def test_interleaved_chunks_keep_order():
    async def run():
        relay, task, (app_r, app_w), (dst_r, dst_w), proxy_writers = await _setup()

        expected = b''
        for i in range(50):
            chunk = bytes([i]) * (i * 97 + 1)
            expected += chunk
            app_w.write(chunk)
            dst_w.write(chunk[::-1])
            await app_w.drain()
            await dst_w.drain()

        assert await asyncio.wait_for(dst_r.readexactly(len(expected)), 5) == expected
        received = await asyncio.wait_for(app_r.readexactly(len(expected)), 5)
        assert len(received) == len(expected)

        dst_w.close()
        stats = await asyncio.wait_for(task, 5)
        assert stats.reason == 'target-closed'
        await _close(app_w, *proxy_writers)
    asyncio.run(run())


def test_target_close_ends_session():
    async def run():
        relay, task, (app_r, app_w), (dst_r, dst_w), proxy_writers = await _setup()
        dst_w.write(b'bye')
        await dst_w.drain()
        dst_w.close()

        stats = await asyncio.wait_for(task, 5)
        assert stats.reason == 'target-closed'
        assert await asyncio.wait_for(app_r.readexactly(3), 5) == b'bye'
        await _close(app_w, *proxy_writers)
    asyncio.run(run())


def test_idle_timeout():
    async def run():
        relay, task, (app_r, app_w), (dst_r, dst_w), proxy_writers = await _setup(idle_timeout=0.2)
        stats = await asyncio.wait_for(task, 5)
        assert stats.reason == 'idle-timeout'
        assert stats.bytes_up == stats.bytes_down == 0
        await _close(app_w, dst_w, *proxy_writers)
    asyncio.run(run())


def test_activity_resets_idle_timeout():
    async def run():
        relay, task, (app_r, app_w), (dst_r, dst_w), proxy_writers = await _setup(idle_timeout=0.5)
        for _ in range(4):
            await asyncio.sleep(0.2)
            app_w.write(b'ping')
            await app_w.drain()
        assert not task.done()
        assert await asyncio.wait_for(dst_r.readexactly(16), 5) == b'ping' * 4

        stats = await asyncio.wait_for(task, 5)
        assert stats.reason == 'idle-timeout'
        await _close(app_w, dst_w, *proxy_writers)
    asyncio.run(run())


def test_cancelled_relay_abandons_pending_reads():
    async def run():
        relay, task, (app_r, app_w), (dst_r, dst_w), proxy_writers = await _setup()
        await asyncio.sleep(0.05)
        task.cancel()
        results = await asyncio.gather(task, return_exceptions=True)
        assert isinstance(results[0], asyncio.CancelledError)
        assert relay._pending == {}
        await _close(app_w, dst_w, *proxy_writers)
    asyncio.run(run())


def test_peer_that_stops_reading_is_bounded_by_idle_timeout():
    async def run():
        relay, task, (app_r, app_w), (dst_r, dst_w), proxy_writers = await _setup(idle_timeout=0.3)
        # 目标端从不读取，大块数据会填满套接字缓冲区
        app_w.write(b'x' * (8 * 1024 * 1024))

        stats = await asyncio.wait_for(task, 5)
        assert stats.reason == 'target-stalled'
        assert stats.bytes_up < 8 * 1024 * 1024

        for writer in (app_w, dst_w, *proxy_writers):
            writer.transport.abort()
        await _close(app_w, dst_w, *proxy_writers)
    asyncio.run(run())
