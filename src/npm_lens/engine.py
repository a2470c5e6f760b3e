from __future__ import annotations

import asyncio
import logging
from dataclasses import replace
from pathlib import Path
from typing import Any, Callable, Iterable

from npm_lens.local_resolver import LocalPackage, resolve_local
from npm_lens.manifest import ManifestError, extract_dependencies, load_manifest_data
from npm_lens.models import DependencyOutcome, ResultSet, Settings
from npm_lens.registry_client import (
    RegistryLookupResult,
    RegistrySettings,
    create_async_client,
    fetch_dist_tags,
)
from npm_lens.versions import UnparseableVersionError, evaluate_channels, satisfies

logger = logging.getLogger(__name__)


def apply_local(outcome: DependencyOutcome, local: LocalPackage | None) -> DependencyOutcome:
    """
    根据本地安装情况计算 local_outdated。
    """
    if local is None:
        return replace(outcome, local_outdated=True)
    try:
        ok = satisfies(local.version, outcome.version_range)
    except UnparseableVersionError as exc:
        logger.warning("%s：无法比较本地版本 %s 与 %s", outcome.name, local.version, outcome.version_range)
        return replace(outcome, local_version=local.version, error=str(exc))
    return replace(outcome, local_version=local.version, local_outdated=not ok)


def apply_registry(
    outcome: DependencyOutcome,
    lookup: RegistryLookupResult,
    *,
    use_beta_channel: bool,
) -> DependencyOutcome:
    """
    将 registry 的 dist-tags 合并进结论，并按渠道策略给出 outdated 判定。
    """
    if lookup.not_found:
        return replace(outcome, error=outcome.error or "package not found")
    if lookup.error:
        return replace(outcome, error=outcome.error or lookup.error)

    beta = lookup.beta if use_beta_channel else None
    outcome = replace(outcome, npm_version_latest=lookup.latest, npm_version_beta=beta)
    if outcome.error or outcome.local_version is None:
        return outcome

    channels = [lookup.latest]
    if use_beta_channel:
        channels.append(beta)
    evaluation = evaluate_channels(outcome.local_version, outcome.version_range, channels)
    return replace(
        outcome,
        npm_version=evaluation.npm_version,
        outdated=evaluation.outdated,
        outdated_not_wanted=evaluation.outdated_not_wanted,
        error=evaluation.error,
    )


async def _resolve_locals(install_root: Path, outcomes: list[DependencyOutcome]) -> list[LocalPackage | None]:
    return list(await asyncio.gather(*(resolve_local(install_root, o.name) for o in outcomes)))


async def _fetch_registry(
    names: list[str],
    *,
    registry: RegistrySettings,
    max_concurrency: int,
    on_fetch_start: Callable[[int], Any] | None,
    on_fetch_complete: Callable[[], Any] | None,
) -> list[RegistryLookupResult]:
    """
    并发查询 dist-tags；单个包失败只影响它自己的结果。
    """
    if on_fetch_start:
        on_fetch_start(len(names))
    if not names:
        return []

    sem = asyncio.Semaphore(max(1, max_concurrency))
    async with create_async_client(registry) as client:

        async def worker(n: str) -> RegistryLookupResult:
            async with sem:
                try:
                    return await fetch_dist_tags(n, settings=registry, client=client)
                except Exception as exc:
                    logger.exception("查询 %s 时出现未预期的错误", n)
                    return RegistryLookupResult(name=n, error=str(exc) or exc.__class__.__name__)
                finally:
                    if on_fetch_complete:
                        on_fetch_complete()

        return list(await asyncio.gather(*(worker(n) for n in names)))


async def check_manifest(
    manifest_path: Path,
    settings: Settings,
    *,
    registry: RegistrySettings,
    max_concurrency: int = 20,
    exclude: Iterable[str] = (),
    install_root: Path | None = None,
    on_fetch_start: Callable[[int], Any] | None = None,
    on_fetch_complete: Callable[[], Any] | None = None,
) -> ResultSet:
    """
    对一个 package.json 执行完整的依赖核对流程并返回 ResultSet。

    阶段依次为：解析声明、并发解析本地版本、并发查询 registry、按渠道策略判定。
    每个阶段对所有依赖完成后才进入下一阶段。
    """
    manifest_path = Path(manifest_path)
    try:
        data = load_manifest_data(manifest_path)
    except ManifestError as exc:
        logger.warning("跳过 %s：%s", manifest_path, exc)
        return ResultSet(manifest_path=str(manifest_path), outcomes=[], error=str(exc))

    excluded = set(exclude)
    declarations = [
        d
        for d in extract_dependencies(data, include_dev=settings.check_dev_dependencies)
        if d.name not in excluded
    ]
    outcomes = [DependencyOutcome.from_declaration(d) for d in declarations]

    root = install_root if install_root is not None else manifest_path.parent / "node_modules"
    locals_ = await _resolve_locals(root, outcomes)
    outcomes = [apply_local(o, local) for o, local in zip(outcomes, locals_)]

    installed = [i for i, o in enumerate(outcomes) if o.local_version is not None]
    lookups = await _fetch_registry(
        [outcomes[i].name for i in installed],
        registry=registry,
        max_concurrency=max_concurrency,
        on_fetch_start=on_fetch_start,
        on_fetch_complete=on_fetch_complete,
    )
    for i, lookup in zip(installed, lookups):
        try:
            outcomes[i] = apply_registry(outcomes[i], lookup, use_beta_channel=settings.use_beta_channel)
        except Exception as exc:
            logger.exception("判定 %s 时出现未预期的错误", outcomes[i].name)
            outcomes[i] = replace(outcomes[i], error=outcomes[i].error or str(exc) or exc.__class__.__name__)

    logger.debug("%s：检查 %d 个依赖，发起 %d 次查询", manifest_path, len(outcomes), len(lookups))
    return ResultSet(manifest_path=str(manifest_path), outcomes=outcomes, fetched=len(lookups))

