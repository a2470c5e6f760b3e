from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any, Callable

from rich.console import Console
from rich.progress import BarColumn, Progress, SpinnerColumn, TextColumn

from npm_lens.config import AppConfig
from npm_lens.coordinator import ProjectCoordinator
from npm_lens.engine import check_manifest
from npm_lens.models import ResultSet, Settings


async def check_with_config(manifest_path: Path, settings: Settings, *, config: AppConfig) -> ResultSet:
    """
    使用 AppConfig 中的 registry/并发/排除配置执行一次检查。
    """
    return await check_manifest(
        manifest_path,
        settings,
        registry=config.registry,
        max_concurrency=config.max_concurrency,
        exclude=config.exclude,
    )


def run_check(manifest_path: Path, *, config: AppConfig) -> ResultSet:
    """
    同步入口：运行依赖检查（内部使用 asyncio）。
    """
    console = Console(stderr=True)
    state: dict[str, Any] = {"progress": None, "task_id": None}

    def on_start(total: int) -> None:
        if total > 0:
            progress = Progress(
                SpinnerColumn(),
                TextColumn("[progress.description]{task.description}"),
                BarColumn(),
                TextColumn("[progress.percentage]{task.percentage:>3.0f}%"),
                "({task.completed}/{task.total})",
                console=console,
                transient=True,
            )
            progress.start()
            task_id = progress.add_task("查询 npm registry...", total=total)
            state["progress"] = progress
            state["task_id"] = task_id

    def on_complete() -> None:
        progress = state["progress"]
        task_id = state["task_id"]
        if progress and task_id is not None:
            progress.advance(task_id)

    try:
        return asyncio.run(
            check_manifest(
                manifest_path,
                config.settings,
                registry=config.registry,
                max_concurrency=config.max_concurrency,
                exclude=config.exclude,
                on_fetch_start=on_start,
                on_fetch_complete=on_complete,
            )
        )
    finally:
        if state["progress"]:
            state["progress"].stop()


async def watch_projects(
    project_paths: list[Path],
    *,
    config: AppConfig,
    on_result: Callable[[ResultSet, Settings], Any],
    stop: asyncio.Event | None = None,
) -> int:
    """
    监听多个项目目录的 package.json，每次检查完成后回调 on_result，直到 stop 被设置。
    """

    async def run(manifest_path: Path, settings: Settings) -> ResultSet:
        return await check_with_config(manifest_path, settings, config=config)

    coordinator = ProjectCoordinator(
        config.settings,
        run=run,
        on_result=on_result,
        debounce_s=config.debounce_s,
    )
    try:
        coordinator.handle_project_paths(project_paths)
        if not coordinator.watchers:
            return 1
        await (stop or asyncio.Event()).wait()
        await coordinator.wait_idle()
        return 0
    finally:
        coordinator.dispose_all()
