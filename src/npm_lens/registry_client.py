from __future__ import annotations

import base64
import logging
from dataclasses import dataclass, field
from typing import Any

import httpx

from npm_lens.names import registry_path

logger = logging.getLogger(__name__)

DEFAULT_REGISTRY_URL = "https://registry.npmjs.org"


@dataclass(frozen=True, slots=True)
class RegistryAuth:
    """
    私有 registry 认证配置。
    """

    bearer_token: str | None = None
    basic_username: str | None = None
    basic_password: str | None = None


@dataclass(frozen=True, slots=True)
class RegistrySettings:
    """
    registry 查询配置。
    """

    registry_url: str = DEFAULT_REGISTRY_URL
    timeout_s: float = 10.0
    auth: RegistryAuth | None = None


@dataclass(frozen=True, slots=True)
class RegistryLookupResult:
    """
    单个包的 dist-tags 查询结果（或错误信息）。
    """

    name: str
    dist_tags: dict[str, str] = field(default_factory=dict)
    not_found: bool = False
    error: str | None = None

    @property
    def latest(self) -> str | None:
        return self.dist_tags.get("latest")

    @property
    def beta(self) -> str | None:
        return self.dist_tags.get("beta")

    @property
    def ok(self) -> bool:
        return not self.not_found and self.error is None


def _build_headers(auth: RegistryAuth | None) -> dict[str, str]:
    """
    基于认证配置构造 HTTP Header。
    """
    headers: dict[str, str] = {"Accept": "application/json"}
    if not auth:
        return headers

    if auth.bearer_token:
        headers["Authorization"] = f"Bearer {auth.bearer_token}"
        return headers

    if auth.basic_username is not None and auth.basic_password is not None:
        token = f"{auth.basic_username}:{auth.basic_password}".encode("utf-8")
        headers["Authorization"] = f"Basic {base64.b64encode(token).decode('ascii')}"
        return headers

    return headers


def _build_package_url(registry_url: str, name: str) -> str:
    """
    生成 registry 包文档的请求 URL。
    """
    return f"{registry_url.rstrip('/')}/{registry_path(name)}"


def parse_dist_tags(data: Any) -> dict[str, str]:
    """
    从 registry 响应中提取 dist-tags（只保留字符串值）。
    """
    if not isinstance(data, dict):
        return {}
    tags = data.get("dist-tags")
    if not isinstance(tags, dict):
        return {}
    return {str(k): v for k, v in tags.items() if isinstance(v, str)}


async def fetch_dist_tags(
    name: str,
    *,
    settings: RegistrySettings,
    client: httpx.AsyncClient,
) -> RegistryLookupResult:
    """
    对单个包发起一次 registry 请求并返回 dist-tags；失败不抛异常。
    """
    url = _build_package_url(settings.registry_url, name)
    try:
        resp = await client.get(url)
    except httpx.TimeoutException as exc:
        logger.warning("查询 %s 超时：%s", name, exc)
        return RegistryLookupResult(name=name, error=f"timeout: {exc}")
    except (httpx.HTTPError, httpx.InvalidURL) as exc:
        logger.warning("查询 %s 失败：%s", name, exc)
        return RegistryLookupResult(name=name, error=str(exc) or exc.__class__.__name__)

    if resp.status_code == 404:
        logger.info("registry 中不存在 %s", name)
        return RegistryLookupResult(name=name, not_found=True)
    if resp.status_code >= 400:
        logger.warning("查询 %s 返回 http %s", name, resp.status_code)
        return RegistryLookupResult(name=name, error=f"http {resp.status_code}")

    try:
        data = resp.json()
    except ValueError as exc:
        logger.warning("%s 的 registry 响应不是 JSON：%s", name, exc)
        return RegistryLookupResult(name=name, error=f"invalid json: {exc}")

    return RegistryLookupResult(name=name, dist_tags=parse_dist_tags(data))


def create_async_client(settings: RegistrySettings) -> httpx.AsyncClient:
    """
    创建用于访问 registry 的 AsyncClient（超时必须有限）。
    """
    headers = _build_headers(settings.auth)
    timeout = httpx.Timeout(settings.timeout_s)
    return httpx.AsyncClient(headers=headers, timeout=timeout, follow_redirects=True)
