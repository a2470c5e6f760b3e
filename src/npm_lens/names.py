from __future__ import annotations

from urllib.parse import quote


def registry_path(name: str) -> str:
    """
    将包名转换为 registry URL 路径段（scoped 包的 / 需编码为 %2f）。
    """
    if name.startswith("@") and "/" in name:
        scope, _, pkg = name.partition("/")
        return f"{quote(scope, safe='@')}%2f{quote(pkg, safe='')}"
    return quote(name, safe="")
