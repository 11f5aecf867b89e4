"""
SOCKS5 代理服务器包

本包实现了代理会话的各个阶段：

- HandshakeNegotiator: 两步握手（方法协商、命令请求）
- dial / Resolver: 目标地址解析和出站连接
- send_reply: 发送应答帧
- SessionRelay: 双向字节中继
- SOCKS5Server: 接受连接并驱动每个会话

使用示例：
    from proxy import SOCKS5Server
    server = SOCKS5Server(config)
    await server.serve_forever()
"""

from .session import Session, SessionState

# 延迟导入服务器相关模块，避免导入协议层时加载日志和配置模块
def __getattr__(name):
    if name == 'SOCKS5Server':
        from .server import SOCKS5Server
        return SOCKS5Server
    elif name in ('HandshakeNegotiator', 'NegotiationState'):
        from . import negotiator
        return getattr(negotiator, name)
    elif name in ('SessionRelay', 'RelayStats'):
        from . import relay
        return getattr(relay, name)
    elif name in ('Resolver', 'dial'):
        from . import resolver
        return getattr(resolver, name)
    elif name in ('send_reply', 'reply_code_for'):
        from . import reply
        return getattr(reply, name)
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")

__all__ = [
    'Session',
    'SessionState',
    'SOCKS5Server',
    'HandshakeNegotiator',
    'NegotiationState',
    'SessionRelay',
    'RelayStats',
    'Resolver',
    'dial',
    'send_reply',
    'reply_code_for',
]
