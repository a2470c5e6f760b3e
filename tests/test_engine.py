from __future__ import annotations

import json
from pathlib import Path

import pytest

from npm_lens.engine import check_manifest
from npm_lens.models import CheckStatus, Settings
from npm_lens.registry_client import RegistryLookupResult, RegistrySettings

REGISTRY = RegistrySettings(registry_url="https://registry.test")


def _write_project(
    root: Path,
    *,
    dependencies: dict[str, str] | None = None,
    dev_dependencies: dict[str, str] | None = None,
    installed: dict[str, str] | None = None,
) -> Path:
    """
    在 tmp 目录下构造 package.json 与 node_modules。
    """
    manifest: dict[str, object] = {"name": "demo"}
    if dependencies is not None:
        manifest["dependencies"] = dependencies
    if dev_dependencies is not None:
        manifest["devDependencies"] = dev_dependencies
    manifest_path = root / "package.json"
    manifest_path.write_text(json.dumps(manifest), encoding="utf-8")
    for name, version in (installed or {}).items():
        pkg_dir = root / "node_modules" / name
        pkg_dir.mkdir(parents=True)
        (pkg_dir / "package.json").write_text(json.dumps({"name": name, "version": version}), encoding="utf-8")
    return manifest_path


def _fake_registry(monkeypatch: pytest.MonkeyPatch, tags: dict[str, dict[str, str] | Exception]) -> list[str]:
    """
    替换真实网络查询；值为异常时模拟网络错误。
    """
    called: list[str] = []

    async def fake_fetch_dist_tags(name: str, *, settings: RegistrySettings, client) -> RegistryLookupResult:
        called.append(name)
        value = tags.get(name)
        if value is None:
            return RegistryLookupResult(name=name, not_found=True)
        if isinstance(value, Exception):
            return RegistryLookupResult(name=name, error=str(value))
        return RegistryLookupResult(name=name, dist_tags=dict(value))

    monkeypatch.setattr("npm_lens.engine.fetch_dist_tags", fake_fetch_dist_tags)
    return called


@pytest.mark.asyncio
async def test_wanted_update_inside_range(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    """
    本地 4.0.0、latest 4.1.0 且满足 ^4.0.0 时应判定 outdated。
    """
    manifest = _write_project(tmp_path, dependencies={"lodash": "^4.0.0"}, installed={"lodash": "4.0.0"})
    _fake_registry(monkeypatch, {"lodash": {"latest": "4.1.0"}})

    result = await check_manifest(manifest, Settings(), registry=REGISTRY)

    [o] = result.outcomes
    assert o.local_version == "4.0.0"
    assert o.local_outdated is False
    assert o.npm_version_latest == "4.1.0"
    assert o.npm_version == "4.1.0"
    assert o.outdated is True
    assert o.outdated_not_wanted is False
    assert o.status == CheckStatus.OUTDATED
    assert result.fetched == 1


@pytest.mark.asyncio
async def test_missing_install_skips_registry(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    """
    未安装的依赖只标记 local_outdated，不查询 registry。
    """
    manifest = _write_project(tmp_path, dependencies={"left-pad": "^1.0.0"})
    called = _fake_registry(monkeypatch, {"left-pad": {"latest": "1.3.0"}})

    result = await check_manifest(manifest, Settings(), registry=REGISTRY)

    [o] = result.outcomes
    assert o.local_outdated is True
    assert o.outdated is False
    assert o.outdated_not_wanted is False
    assert o.npm_version is None
    assert o.status == CheckStatus.NOT_INSTALLED
    assert called == []
    assert result.fetched == 0


@pytest.mark.asyncio
async def test_latest_outside_range_is_not_wanted(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    """
    latest 超出范围上界时应判定 outdated_not_wanted。
    """
    manifest = _write_project(tmp_path, dependencies={"foo": "^1.0.0"}, installed={"foo": "1.0.0"})
    _fake_registry(monkeypatch, {"foo": {"latest": "2.0.0"}})

    result = await check_manifest(manifest, Settings(), registry=REGISTRY)

    [o] = result.outcomes
    assert o.local_outdated is False
    assert o.npm_version == "2.0.0"
    assert o.outdated_not_wanted is True
    assert o.outdated is False
    assert o.status == CheckStatus.UPDATE_OUT_OF_RANGE


@pytest.mark.asyncio
async def test_dev_dependencies_disabled_yields_empty_result(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path
) -> None:
    """
    关闭 devDependencies 检查且只有 dev 依赖时，结果为空。
    """
    manifest = _write_project(tmp_path, dev_dependencies={"jest": "^29.0.0"}, installed={"jest": "29.0.0"})
    called = _fake_registry(monkeypatch, {"jest": {"latest": "29.7.0"}})

    result = await check_manifest(manifest, Settings(check_dev_dependencies=False), registry=REGISTRY)

    assert result.outcomes == []
    assert called == []


@pytest.mark.asyncio
async def test_registry_failure_is_isolated(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    """
    单个包查询失败不影响其他包的结果。
    """
    manifest = _write_project(
        tmp_path,
        dependencies={"a": "^1.0.0", "b": "^1.0.0", "c": "^1.0.0"},
        installed={"a": "1.0.0", "b": "1.0.0", "c": "1.0.0"},
    )
    _fake_registry(
        monkeypatch,
        {"a": {"latest": "1.2.0"}, "b": ConnectionError("connection refused"), "c": {"latest": "3.0.0"}},
    )

    result = await check_manifest(manifest, Settings(), registry=REGISTRY)

    a, b, c = result.outcomes
    assert [o.name for o in result.outcomes] == ["a", "b", "c"]
    assert a.outdated is True and a.npm_version == "1.2.0"
    assert c.outdated_not_wanted is True and c.npm_version == "3.0.0"
    assert b.local_outdated is False
    assert b.npm_version_latest is None
    assert b.npm_version is None
    assert b.outdated is False and b.outdated_not_wanted is False
    assert b.error == "connection refused"
    assert b.status == CheckStatus.REGISTRY_ERROR


@pytest.mark.asyncio
async def test_unexpected_fetch_exception_is_isolated(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    """
    fetch 抛出未预期异常时也只影响对应依赖。
    """
    manifest = _write_project(
        tmp_path,
        dependencies={"ok": "^1.0.0", "boom": "^1.0.0"},
        installed={"ok": "1.0.0", "boom": "1.0.0"},
    )

    async def fake_fetch_dist_tags(name: str, *, settings: RegistrySettings, client) -> RegistryLookupResult:
        if name == "boom":
            raise RuntimeError("kaboom")
        return RegistryLookupResult(name=name, dist_tags={"latest": "1.0.1"})

    monkeypatch.setattr("npm_lens.engine.fetch_dist_tags", fake_fetch_dist_tags)

    result = await check_manifest(manifest, Settings(), registry=REGISTRY)

    ok, boom = result.outcomes
    assert ok.outdated is True
    assert boom.error == "kaboom"
    assert boom.outdated is False


@pytest.mark.asyncio
async def test_latest_wins_over_beta_when_both_satisfy(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    """
    latest 与 beta 都满足范围时，目标版本取 latest。
    """
    manifest = _write_project(tmp_path, dependencies={"foo": "^1.0.0"}, installed={"foo": "1.0.0"})
    _fake_registry(monkeypatch, {"foo": {"latest": "1.1.0", "beta": "1.2.0"}})

    result = await check_manifest(manifest, Settings(use_beta_channel=True), registry=REGISTRY)

    [o] = result.outcomes
    assert o.npm_version_latest == "1.1.0"
    assert o.npm_version_beta == "1.2.0"
    assert o.npm_version == "1.1.0"
    assert o.outdated is True


@pytest.mark.asyncio
async def test_satisfying_beta_beats_out_of_range_latest(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    """
    latest 超出范围而 beta 满足范围时，以 beta 为目标且不标记 outdated_not_wanted。
    """
    manifest = _write_project(tmp_path, dependencies={"foo": "^2.0.0-beta.0"}, installed={"foo": "2.0.0-beta.1"})
    _fake_registry(monkeypatch, {"foo": {"latest": "3.0.0", "beta": "2.0.0-beta.5"}})

    result = await check_manifest(manifest, Settings(use_beta_channel=True), registry=REGISTRY)

    [o] = result.outcomes
    assert o.npm_version == "2.0.0-beta.5"
    assert o.outdated is True
    assert o.outdated_not_wanted is False


@pytest.mark.asyncio
async def test_beta_ignored_when_channel_disabled(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    """
    未启用 beta 渠道时不记录也不比较 beta。
    """
    manifest = _write_project(tmp_path, dependencies={"foo": "^1.0.0"}, installed={"foo": "1.1.0"})
    _fake_registry(monkeypatch, {"foo": {"latest": "1.1.0", "beta": "1.5.0"}})

    result = await check_manifest(manifest, Settings(use_beta_channel=False), registry=REGISTRY)

    [o] = result.outcomes
    assert o.npm_version_beta is None
    assert o.npm_version == "1.1.0"
    assert o.outdated is False
    assert o.status == CheckStatus.UP_TO_DATE


@pytest.mark.asyncio
async def test_local_version_outside_range_is_local_outdated(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path
) -> None:
    """
    本地版本不满足范围时标记 local_outdated，但仍会比较 registry。
    """
    manifest = _write_project(tmp_path, dependencies={"foo": "^2.0.0"}, installed={"foo": "1.0.0"})
    _fake_registry(monkeypatch, {"foo": {"latest": "2.1.0"}})

    result = await check_manifest(manifest, Settings(), registry=REGISTRY)

    [o] = result.outcomes
    assert o.local_outdated is True
    assert o.status == CheckStatus.LOCAL_MISMATCH
    assert o.npm_version == "2.1.0"
    assert not (o.outdated and o.outdated_not_wanted)


@pytest.mark.asyncio
async def test_unparseable_range_gives_no_verdict(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    """
    无法解析的范围（如 git URL）不产生任何 outdated 判定，也不报告本地不满足。
    """
    manifest = _write_project(
        tmp_path,
        dependencies={"gitdep": "github:user/repo#main"},
        installed={"gitdep": "1.0.0"},
    )
    _fake_registry(monkeypatch, {"gitdep": {"latest": "9.9.9"}})

    result = await check_manifest(manifest, Settings(), registry=REGISTRY)

    [o] = result.outcomes
    assert o.local_outdated is False
    assert o.outdated is False
    assert o.outdated_not_wanted is False
    assert o.npm_version is None
    assert o.npm_version_latest == "9.9.9"
    assert o.status == CheckStatus.UNPARSEABLE


@pytest.mark.asyncio
async def test_duplicate_prod_and_dev_entries_are_kept(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    """
    同一个包同时出现在 dependencies 与 devDependencies 时产生两条结果。
    """
    manifest = _write_project(
        tmp_path,
        dependencies={"foo": "^1.0.0", "bar": "^1.0.0"},
        dev_dependencies={"foo": "^1.0.0"},
        installed={"foo": "1.0.0", "bar": "1.0.0"},
    )
    _fake_registry(monkeypatch, {"foo": {"latest": "1.0.0"}, "bar": {"latest": "1.0.0"}})

    result = await check_manifest(manifest, Settings(), registry=REGISTRY)

    assert [(o.name, o.is_dev) for o in result.outcomes] == [("foo", False), ("bar", False), ("foo", True)]


@pytest.mark.asyncio
async def test_exclude_drops_dependencies(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    manifest = _write_project(tmp_path, dependencies={"foo": "^1.0.0", "bar": "^1.0.0"})
    _fake_registry(monkeypatch, {})

    result = await check_manifest(manifest, Settings(), registry=REGISTRY, exclude=("bar",))

    assert [o.name for o in result.outcomes] == ["foo"]


@pytest.mark.asyncio
async def test_broken_manifest_returns_empty_result(tmp_path: Path) -> None:
    """
    package.json 损坏时返回空结果并附带错误，不抛异常。
    """
    manifest = tmp_path / "package.json"
    manifest.write_text("{ not json", encoding="utf-8")

    result = await check_manifest(manifest, Settings(), registry=REGISTRY)

    assert result.outcomes == []
    assert result.error is not None


@pytest.mark.asyncio
async def test_missing_manifest_returns_empty_result(tmp_path: Path) -> None:
    result = await check_manifest(tmp_path / "package.json", Settings(), registry=REGISTRY)
    assert result.outcomes == []
    assert result.error is not None


@pytest.mark.asyncio
async def test_repeated_runs_are_identical(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    """
    状态不变时两次检查的结果完全相同。
    """
    manifest = _write_project(
        tmp_path,
        dependencies={"a": "^1.0.0", "b": "~2.1.0", "c": "^1.0.0"},
        dev_dependencies={"d": "1.x"},
        installed={"a": "1.0.0", "b": "2.1.3", "d": "1.4.0"},
    )
    _fake_registry(
        monkeypatch,
        {"a": {"latest": "1.5.0"}, "b": {"latest": "2.2.0"}, "d": {"latest": "1.4.0", "beta": "2.0.0-rc.1"}},
    )
    settings = Settings(use_beta_channel=True)

    first = await check_manifest(manifest, settings, registry=REGISTRY)
    second = await check_manifest(manifest, settings, registry=REGISTRY)

    assert first == second
    for o in first.outcomes:
        assert not (o.outdated and o.outdated_not_wanted)
        if o.local_version is None:
            assert o.local_outdated is True
            assert o.outdated is False and o.outdated_not_wanted is False


@pytest.mark.asyncio
async def test_latest_below_range_gives_no_verdict(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    """
    latest 低于范围下界时既不是可更新也不是范围外新版本。
    """
    manifest = _write_project(tmp_path, dependencies={"foo": "^1.0.0"}, installed={"foo": "1.0.0"})
    _fake_registry(monkeypatch, {"foo": {"latest": "0.9.0"}})

    result = await check_manifest(manifest, Settings(), registry=REGISTRY)

    [o] = result.outcomes
    assert o.npm_version is None
    assert o.outdated is False
    assert o.outdated_not_wanted is False
    assert o.error is None
    assert o.status == CheckStatus.UP_TO_DATE


@pytest.mark.asyncio
async def test_registry_miss_keeps_unparseable_error(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    """
    范围无法解析的依赖即使 registry 查不到，也保留最初的解析错误。
    """
    manifest = _write_project(
        tmp_path,
        dependencies={"gitdep": "github:user/repo#main"},
        installed={"gitdep": "1.0.0"},
    )
    _fake_registry(monkeypatch, {})

    result = await check_manifest(manifest, Settings(), registry=REGISTRY)

    [o] = result.outcomes
    assert o.error is not None
    assert o.error.startswith("invalid version")
    assert o.status == CheckStatus.UNPARSEABLE


@pytest.mark.asyncio
async def test_comparison_failure_is_isolated(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    """
    版本比较内部出错只影响该依赖，其余依赖照常判定。
    """
    manifest = _write_project(
        tmp_path,
        dependencies={"a": "^1.0.0", "b": "^1.0.0"},
        installed={"a": "1.0.0", "b": "1.0.0"},
    )
    _fake_registry(monkeypatch, {"a": {"latest": "1.1.0"}, "b": {"latest": "2.0.0"}})

    def broken_greater_than_range(version: str, version_range: str) -> bool:
        raise AttributeError("boom")

    monkeypatch.setattr("npm_lens.versions.greater_than_range", broken_greater_than_range)

    result = await check_manifest(manifest, Settings(), registry=REGISTRY)

    a, b = result.outcomes
    assert a.outdated is True
    assert a.npm_version == "1.1.0"
    assert b.outdated_not_wanted is False
    assert b.error is not None
    assert b.status == CheckStatus.REGISTRY_ERROR
