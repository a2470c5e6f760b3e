from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class LocalPackage:
    """
    node_modules 中已安装包的信息。
    """

    name: str
    version: str
    manifest_path: str


def _read_installed_version(package_json: Path) -> str | None:
    """
    读取已安装包的 package.json 并返回 version 字段；任何失败都视为未安装。
    """
    if not package_json.is_file():
        logger.debug("未安装：%s 不存在", package_json)
        return None
    try:
        data = json.loads(package_json.read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        logger.warning("无法读取 %s：%s", package_json, exc)
        return None
    if not isinstance(data, dict):
        logger.warning("%s 不是 JSON 对象", package_json)
        return None
    version = data.get("version")
    if not isinstance(version, str) or not version:
        logger.warning("%s 缺少 version 字段", package_json)
        return None
    return version


async def resolve_local(install_root: Path, name: str) -> LocalPackage | None:
    """
    查询依赖在 install_root（通常是 node_modules）下的实际安装版本。
    """
    package_json = install_root / name / "package.json"
    version = await asyncio.to_thread(_read_installed_version, package_json)
    if version is None:
        return None
    return LocalPackage(name=name, version=version, manifest_path=str(package_json))
