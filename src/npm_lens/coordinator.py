from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Iterable

from npm_lens.models import Settings
from npm_lens.watcher import ManifestWatcher, ResultFn, RunFn, SubscribeFn, watch_file

logger = logging.getLogger(__name__)

MANIFEST_NAME = "package.json"


class ProjectCoordinator:
    """
    管理多个项目根目录各自的 ManifestWatcher（以解析后的路径为键）。
    """

    def __init__(
        self,
        settings: Settings,
        *,
        run: RunFn,
        on_result: ResultFn | None = None,
        debounce_s: float = 0.5,
        subscribe: SubscribeFn | None = None,
    ) -> None:
        self._settings = settings
        self._run = run
        self._on_result = on_result
        self._debounce_s = debounce_s
        self._subscribe = subscribe or watch_file
        self._watchers: dict[Path, ManifestWatcher] = {}

    @property
    def watchers(self) -> dict[Path, ManifestWatcher]:
        return dict(self._watchers)

    def _create_watcher(self, project_path: Path) -> ManifestWatcher | None:
        manifest_path = project_path / MANIFEST_NAME
        if not manifest_path.is_file():
            logger.info("%s 下没有 %s，跳过", project_path, MANIFEST_NAME)
            return None
        return ManifestWatcher(
            manifest_path,
            self._settings,
            run=self._run,
            on_result=self._on_result,
            debounce_s=self._debounce_s,
            subscribe=self._subscribe,
        )

    def handle_project_paths(self, project_paths: Iterable[Path]) -> None:
        """
        为新增的项目目录创建 watcher，并释放已移除目录的 watcher。
        """
        wanted = [Path(p).resolve() for p in project_paths]
        for path in wanted:
            if path in self._watchers:
                continue
            watcher = self._create_watcher(path)
            if watcher is not None:
                self._watchers[path] = watcher

        for path in list(self._watchers):
            if path not in wanted:
                self._watchers.pop(path).dispose()

    def update_settings(self, settings: Settings) -> None:
        self._settings = settings
        for watcher in self._watchers.values():
            watcher.update_settings(settings)

    def check_all(self) -> None:
        for watcher in self._watchers.values():
            watcher.check()

    async def wait_idle(self) -> None:
        await asyncio.gather(*(w.wait_idle() for w in list(self._watchers.values())))

    def dispose_all(self) -> None:
        for watcher in self._watchers.values():
            watcher.dispose()
        self._watchers = {}
