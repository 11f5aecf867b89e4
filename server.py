#!/usr/bin/env python3
"""
SOCKS5 代理服务端

协议:
1. 认证方法协商 - 总是选择 "无需认证"
2. CONNECT 请求 - 支持 IPv4 地址和域名
3. 双向字节中继，直到任一侧关闭

用法:
    python3 server.py [port] [--config config.yaml] [--host 0.0.0.0] [--debug]
"""

import argparse
import asyncio
import logging
import signal
import sys

from config import DEFAULT_PORT, load_proxy_config
from logger import LoggerManager
from proxy import SOCKS5Server
from resource_monitor import ResourceMonitor

logger = logging.getLogger('socks5-proxy')


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description='SOCKS5 代理服务端')
    parser.add_argument('port', nargs='?', type=int, default=None,
                        help=f'监听端口（默认：配置文件或 {DEFAULT_PORT}）')
    parser.add_argument('--config', '-c', default='config.yaml', help='配置文件路径')
    parser.add_argument('--host', default=None, help='监听地址（默认：0.0.0.0）')
    parser.add_argument('--debug', '-d', action='store_true', help='启用调试模式')
    return parser.parse_args(argv)


async def run_server(server: SOCKS5Server):
    """运行服务端，收到 SIGINT / SIGTERM 时优雅停止"""
    loop = asyncio.get_running_loop()
    await server.start()

    shutdown_tasks = set()

    def on_signal(sig):
        task = asyncio.ensure_future(_shutdown(server, sig))
        shutdown_tasks.add(task)
        task.add_done_callback(shutdown_tasks.discard)

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, on_signal, sig)
        except NotImplementedError:
            # Windows 事件循环不支持信号处理器，依赖 KeyboardInterrupt
            pass

    monitor_task = None
    if server.config.monitor_interval > 0:
        monitor = ResourceMonitor(server, interval=server.config.monitor_interval)
        monitor_task = asyncio.create_task(monitor.run())

    try:
        await server.serve_forever()
    finally:
        if monitor_task:
            monitor_task.cancel()
            await asyncio.gather(monitor_task, return_exceptions=True)
        await server.stop()
        if shutdown_tasks:
            await asyncio.gather(*shutdown_tasks)


async def _shutdown(server: SOCKS5Server, sig):
    logger.info(f"收到信号 {signal.Signals(sig).name}，正在停止")
    await server.stop()


def main(argv=None):
    """主函数"""
    args = parse_args(argv)

    LoggerManager().initialize(config_file=args.config)
    if args.debug:
        logging.getLogger().setLevel(logging.DEBUG)
        for handler in LoggerManager().handlers:
            handler.setLevel(logging.DEBUG)

    if args.port is None:
        logger.info("未指定端口，使用配置文件或默认端口")

    try:
        config = load_proxy_config(args.config, host=args.host, port=args.port)
    except (TypeError, ValueError) as e:
        logger.error(f"配置错误: {e}")
        return 1

    server = SOCKS5Server(config)

    try:
        asyncio.run(run_server(server))
    except KeyboardInterrupt:
        logger.info("服务端已停止")
    except OSError as e:
        logger.error(f"无法监听 {config.host}:{config.port}: {e}")
        return 1

    return 0


if __name__ == '__main__':
    sys.exit(main())
