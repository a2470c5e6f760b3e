from __future__ import annotations

import math
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

try:
    import tomllib
except ModuleNotFoundError:  # pragma: no cover
    import tomli as tomllib

from npm_lens.models import Settings
from npm_lens.registry_client import DEFAULT_REGISTRY_URL, RegistryAuth, RegistrySettings

DEFAULT_TIMEOUT_S = 10.0
DEFAULT_DEBOUNCE_S = 0.5


@dataclass(frozen=True, slots=True)
class AppConfig:
    """
    npm-lens 的运行配置（可来自配置文件、环境变量与 CLI 参数合并）。
    """

    settings: Settings = field(default_factory=Settings)
    registry: RegistrySettings = field(default_factory=RegistrySettings)
    max_concurrency: int = 20
    debounce_s: float = DEFAULT_DEBOUNCE_S
    exclude: tuple[str, ...] = ()


def _find_default_config_file(cwd: Path) -> Path | None:
    """
    在当前目录查找默认配置文件路径。
    """
    candidates = [
        ".npm-lens.toml",
        ".npm-lens.yaml",
        ".npm-lens.yml",
        "npm-lens.toml",
        "npm-lens.yaml",
        "npm-lens.yml",
    ]
    for name in candidates:
        p = cwd / name
        if p.exists() and p.is_file():
            return p
    return None


def _load_yaml(path: Path) -> dict[str, Any]:
    """
    读取 YAML 配置文件（需要 PyYAML）。
    """
    import yaml

    with path.open("r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        return {}
    return data


def _load_config_file(path: Path) -> dict[str, Any]:
    """
    读取 .toml 或 .yaml 配置文件，返回配置字典。
    """
    suffix = path.suffix.lower()
    if suffix == ".toml":
        data = tomllib.loads(path.read_text(encoding="utf-8"))
        return data if isinstance(data, dict) else {}
    if suffix in {".yaml", ".yml"}:
        return _load_yaml(path)
    return {}


def _env_list(key: str) -> list[str]:
    """
    从环境变量读取列表（逗号分隔）。
    """
    value = os.environ.get(key)
    if not value:
        return []
    return [v.strip() for v in value.split(",") if v.strip()]


def _cfg_bool(cfg: dict[str, Any], key: str, default: bool) -> bool:
    return bool(cfg.get(key) if key in cfg else default)


def _positive_float(value: Any, default: float) -> float:
    """
    解析正的有限浮点数，非法值回退到默认值。
    """
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    if not math.isfinite(number) or number <= 0:
        return default
    return number


def load_config(config_path: str | None) -> AppConfig:
    """
    从配置文件与环境变量加载 AppConfig。
    """
    config_data: dict[str, Any] = {}
    if config_path:
        config_data = _load_config_file(Path(config_path))
    else:
        default = _find_default_config_file(Path.cwd())
        if default:
            config_data = _load_config_file(default)

    tool_cfg = config_data.get("npm_lens") if isinstance(config_data, dict) else {}
    if not isinstance(tool_cfg, dict):
        tool_cfg = {}

    registry_url = (
        os.environ.get("NPM_LENS_REGISTRY_URL")
        or str(tool_cfg.get("registry_url") or "")
        or DEFAULT_REGISTRY_URL
    )

    bearer = os.environ.get("NPM_LENS_TOKEN") or str(tool_cfg.get("token") or "") or None
    basic_user = os.environ.get("NPM_LENS_BASIC_USERNAME") or str(tool_cfg.get("basic_username") or "") or None
    basic_pass = os.environ.get("NPM_LENS_BASIC_PASSWORD") or str(tool_cfg.get("basic_password") or "") or None
    auth = None
    if bearer or (basic_user is not None and basic_pass is not None):
        auth = RegistryAuth(bearer_token=bearer, basic_username=basic_user, basic_password=basic_pass)

    registry = RegistrySettings(
        registry_url=registry_url,
        timeout_s=_positive_float(tool_cfg.get("timeout_s"), DEFAULT_TIMEOUT_S),
        auth=auth,
    )

    settings = Settings(
        check_dev_dependencies=_cfg_bool(tool_cfg, "check_dev_dependencies", True),
        use_beta_channel=_cfg_bool(tool_cfg, "use_beta_channel", False),
        notify_outdated=_cfg_bool(tool_cfg, "notify_outdated", True),
        notify_update=_cfg_bool(tool_cfg, "notify_update", True),
    )

    max_concurrency = int(tool_cfg.get("max_concurrency") or 20)
    debounce_s = _positive_float(tool_cfg.get("debounce_s"), DEFAULT_DEBOUNCE_S)
    exclude = tuple(_env_list("NPM_LENS_EXCLUDE") or list(tool_cfg.get("exclude") or []))

    return AppConfig(
        settings=settings,
        registry=registry,
        max_concurrency=max(1, max_concurrency),
        debounce_s=debounce_s,
        exclude=exclude,
    )
