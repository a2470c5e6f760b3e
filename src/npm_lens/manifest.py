from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from npm_lens.models import DependencyDeclaration

logger = logging.getLogger(__name__)


class ManifestError(Exception):
    """
    package.json 无法读取或不是合法的 JSON 对象。
    """


def load_manifest_data(manifest_path: Path) -> dict[str, Any]:
    """
    读取并解析 package.json，返回 JSON 对象。
    """
    try:
        content = manifest_path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        raise ManifestError(f"cannot read {manifest_path}: {exc}") from exc
    if not content.strip():
        raise ManifestError(f"{manifest_path} is empty")
    try:
        data = json.loads(content)
    except ValueError as exc:
        raise ManifestError(f"invalid json in {manifest_path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ManifestError(f"{manifest_path} is not a JSON object")
    return data


def _declarations(section: Any, *, key: str, is_dev: bool) -> list[DependencyDeclaration]:
    if section is None:
        return []
    if not isinstance(section, dict):
        logger.warning("忽略非对象的 %s 字段", key)
        return []
    decls: list[DependencyDeclaration] = []
    for name, version_range in section.items():
        if not isinstance(version_range, str):
            logger.warning("忽略 %s.%s：版本范围不是字符串", key, name)
            continue
        decls.append(DependencyDeclaration(name=str(name), version_range=version_range, is_dev=is_dev))
    return decls


def extract_dependencies(manifest_data: dict[str, Any], *, include_dev: bool) -> list[DependencyDeclaration]:
    """
    按顺序抽取 dependencies 与（可选的）devDependencies。

    同名包同时出现在两处时保留两条声明。
    """
    decls = _declarations(manifest_data.get("dependencies"), key="dependencies", is_dev=False)
    if include_dev:
        decls.extend(_declarations(manifest_data.get("devDependencies"), key="devDependencies", is_dev=True))
    return decls
