from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

import nodesemver

logger = logging.getLogger(__name__)

_LOOSE = False


class UnparseableVersionError(ValueError):
    """
    版本号或版本范围无法按 semver 解析。
    """

    def __init__(self, value: str) -> None:
        super().__init__(f"invalid version or range: {value!r}")
        self.value = value


@dataclass(frozen=True, slots=True)
class VersionEvaluation:
    """
    registry 渠道版本与本地版本对比的结果。
    """

    npm_version: str | None
    outdated: bool
    outdated_not_wanted: bool
    error: str | None


def _check_version(version: str) -> str:
    if not isinstance(version, str):
        raise UnparseableVersionError(str(version))
    try:
        nodesemver.make_semver(version, _LOOSE)
    except (ValueError, TypeError) as exc:
        raise UnparseableVersionError(version) from exc
    return version


def _check_range(version_range: str) -> str:
    if not isinstance(version_range, str):
        raise UnparseableVersionError(str(version_range))
    try:
        nodesemver.make_range(version_range, _LOOSE)
    except (ValueError, TypeError) as exc:
        raise UnparseableVersionError(version_range) from exc
    return version_range


def satisfies(version: str, version_range: str) -> bool:
    """
    判断 version 是否落在 version_range 内（npm semver 语义）。
    """
    _check_version(version)
    _check_range(version_range)
    try:
        return bool(nodesemver.satisfies(version, version_range, _LOOSE))
    except (ValueError, TypeError) as exc:
        raise UnparseableVersionError(f"{version} {version_range}") from exc


def _above_comparator_set(version: str, comparators: list[Any]) -> bool:
    # 找出该比较器集合的上下界；上界不封顶（> / >=）时不可能高于该集合
    high = low = None
    for comp in comparators:
        if comp.semver is nodesemver.ANY:
            comp = nodesemver.make_comparator(">=0.0.0", _LOOSE)
        high = high or comp
        low = low or comp
        if nodesemver.gt(comp.semver, high.semver, _LOOSE):
            high = comp
        elif nodesemver.lt(comp.semver, low.semver, _LOOSE):
            low = comp

    if high is None or low is None:
        return False
    if high.operator in (">", ">="):
        return False
    if low.operator in ("", ">") and nodesemver.lte(version, low.semver, _LOOSE):
        return False
    if low.operator == ">=" and nodesemver.lt(version, low.semver, _LOOSE):
        return False
    return True


def greater_than_range(version: str, version_range: str) -> bool:
    """
    判断 version 是否严格大于 version_range 允许的所有版本。

    与 npm 的 gtr 一致：version 不满足范围，且高于 `||` 分隔的每个比较器集合。
    """
    _check_version(version)
    _check_range(version_range)
    try:
        if nodesemver.satisfies(version, version_range, _LOOSE):
            return False
        parsed = nodesemver.make_range(version_range, _LOOSE)
        return all(_above_comparator_set(version, comparators) for comparators in parsed.set)
    except (ValueError, TypeError) as exc:
        raise UnparseableVersionError(f"{version} {version_range}") from exc


def greater_than(a: str, b: str) -> bool:
    """
    严格比较两个版本号：a > b。
    """
    _check_version(a)
    _check_version(b)
    try:
        return bool(nodesemver.gt(a, b, _LOOSE))
    except (ValueError, TypeError) as exc:
        raise UnparseableVersionError(f"{a} {b}") from exc


def evaluate_channels(
    local_version: str,
    version_range: str,
    channels: list[str | None],
) -> VersionEvaluation:
    """
    按渠道顺序（latest、beta）选出对比目标版本并给出 outdated 判定。

    第一个满足范围的渠道胜出；只有没有任何渠道满足范围时，
    才会采用第一个超出范围上界的渠道并标记 outdated_not_wanted。
    """
    wanted: str | None = None
    not_wanted: str | None = None
    error: str | None = None

    for version in channels:
        if version is None:
            continue
        try:
            if satisfies(version, version_range):
                if wanted is None:
                    wanted = version
            elif greater_than_range(version, version_range):
                if not_wanted is None:
                    not_wanted = version
        except UnparseableVersionError as exc:
            error = error or str(exc)
        except Exception as exc:
            logger.exception("比较 %s 与范围 %s 时出现未预期的错误", version, version_range)
            error = error or f"version comparison failed: {exc}"

    if wanted is not None:
        try:
            outdated = greater_than(wanted, local_version)
        except UnparseableVersionError as exc:
            return VersionEvaluation(npm_version=wanted, outdated=False, outdated_not_wanted=False, error=str(exc))
        return VersionEvaluation(npm_version=wanted, outdated=outdated, outdated_not_wanted=False, error=error)

    if not_wanted is not None:
        return VersionEvaluation(npm_version=not_wanted, outdated=False, outdated_not_wanted=True, error=error)

    return VersionEvaluation(npm_version=None, outdated=False, outdated_not_wanted=False, error=error)
