"""
HTTP Client
进程级共享的 httpx.AsyncClient 与网关 URL 构造
"""
from typing import Optional
from urllib.parse import urlencode, urlsplit, urlunsplit

import httpx

from config import get_settings


def build_http_client(
    timeout: Optional[float] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> httpx.AsyncClient:
    """
    创建共享 HTTP 客户端

    所有组件复用同一个客户端以获得连接复用和统一的超时策略。

    Args:
        timeout: 超时时间 (秒), 默认读取 GENERAL_REQUEST_TIMEOUT
        transport: 自定义 transport (测试用 httpx.MockTransport)
    """
    general = get_settings().general
    return httpx.AsyncClient(
        timeout=httpx.Timeout(float(timeout or general.request_timeout)),
        limits=httpx.Limits(max_connections=64, max_keepalive_connections=32),
        headers={"User-Agent": general.user_agent},
        follow_redirects=True,
        verify=general.verify_tls,
        transport=transport,
    )


def sanitize_gateways(gateways: Optional[list]) -> Optional[list]:
    """去掉网关地址末尾的 '/'；None 保持 None (区分 "未提供" 与 "空列表")"""
    if gateways is None:
        return None
    return [str(item).rstrip("/") for item in gateways]


def with_gateway(target_url: str, gateway: Optional[str], authorization: Optional[str] = None) -> str:
    """
    构造经由转发网关的请求地址: gateway?url=<target>&authorization=<token>

    没有网关时原样返回目标地址。
    """
    if not gateway:
        return target_url

    parts = urlsplit(gateway)
    params = [("url", target_url)]
    if authorization:
        params.append(("authorization", authorization))
    query = urlencode(params)
    if parts.query:
        query = f"{parts.query}&{query}"
    path = parts.path or "/"
    return urlunsplit((parts.scheme, parts.netloc, path, query, parts.fragment))
