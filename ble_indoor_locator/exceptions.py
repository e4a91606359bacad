from __future__ import annotations


class LocatorError(Exception):
    """定位服务异常基类"""


class AnchorConfigError(LocatorError, ValueError):
    """锚点配置不完整或不合法（缺少槽位、重复槽位、重复匹配键等）"""


class SessionStartError(LocatorError):
    """扫描会话启动失败（扫描源不可用等）"""


class ScanTransportError(LocatorError):
    """扫描源报告的非致命错误（载荷无法解析、连接中断等）"""
