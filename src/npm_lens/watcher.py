from __future__ import annotations

import asyncio
import logging
import os
import threading
from pathlib import Path
from typing import Any, Awaitable, Callable

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from npm_lens.models import ResultSet, Settings

logger = logging.getLogger(__name__)

RunFn = Callable[[Path, Settings], Awaitable[ResultSet]]
ResultFn = Callable[[ResultSet, Settings], Any]
SubscribeFn = Callable[[Path, Callable[[], None]], "FileSubscription"]


class _ManifestEventHandler(FileSystemEventHandler):
    """
    只关心目标 package.json 的文件事件处理器。
    """

    def __init__(self, manifest_path: Path, callback: Callable[[], None]) -> None:
        super().__init__()
        self._path = os.path.abspath(manifest_path)
        self._callback = callback

    def _matches(self, raw_path: Any) -> bool:
        if not raw_path:
            return False
        return os.path.abspath(os.fsdecode(raw_path)) == self._path

    def on_modified(self, event: FileSystemEvent) -> None:
        if not event.is_directory and self._matches(event.src_path):
            self._callback()

    def on_created(self, event: FileSystemEvent) -> None:
        if not event.is_directory and self._matches(event.src_path):
            self._callback()

    def on_moved(self, event: FileSystemEvent) -> None:
        # 编辑器常用“写临时文件再 rename”的方式保存
        if not event.is_directory and self._matches(getattr(event, "dest_path", None)):
            self._callback()


class FileSubscription:
    """
    文件监听句柄；close() 可重复调用，可在任意线程调用。
    """

    def __init__(self, observer: Any | None) -> None:
        self._observer = observer
        self._lock = threading.Lock()

    @property
    def closed(self) -> bool:
        return self._observer is None

    def close(self) -> None:
        with self._lock:
            observer, self._observer = self._observer, None
        if observer is None:
            return
        observer.stop()
        if not observer.is_alive() or threading.current_thread() is observer:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            observer.join(timeout=2)
            return
        # 在事件循环线程内不阻塞等待 observer 线程退出
        loop.run_in_executor(None, observer.join, 2)

    def __enter__(self) -> FileSubscription:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


def watch_file(manifest_path: Path, callback: Callable[[], None]) -> FileSubscription:
    """
    监听 manifest 文件的修改（watchdog 监听其所在目录，再按路径过滤）。

    callback 在 watchdog 的后台线程中被调用。
    """
    handler = _ManifestEventHandler(manifest_path, callback)
    observer = Observer()
    observer.schedule(handler, str(Path(manifest_path).resolve().parent), recursive=False)
    observer.daemon = True
    observer.start()
    return FileSubscription(observer)


class ManifestWatcher:
    """
    单个 package.json 的检查调度器：文件变更去抖后触发检查，同一时刻最多一次检查在执行。

    必须在运行中的事件循环内创建；创建后立即触发一次检查。
    检查进行中再次触发时不会取消当前检查，而是在其结束后补跑一次。
    """

    def __init__(
        self,
        manifest_path: Path,
        settings: Settings,
        *,
        run: RunFn,
        on_result: ResultFn | None = None,
        debounce_s: float = 0.5,
        subscribe: SubscribeFn | None = None,
    ) -> None:
        self._loop = asyncio.get_running_loop()
        self._manifest_path = Path(manifest_path)
        self._settings = settings
        self._run = run
        self._on_result = on_result
        self._debounce_s = max(0.0, debounce_s)
        self._timer: asyncio.TimerHandle | None = None
        self._task: asyncio.Task[ResultSet | None] | None = None
        self._rerun = False
        self._disposed = False
        self.last_result: ResultSet | None = None
        self._subscription = (subscribe or watch_file)(self._manifest_path, self._signal)
        self.check()

    @property
    def manifest_path(self) -> Path:
        return self._manifest_path

    @property
    def settings(self) -> Settings:
        return self._settings

    @property
    def disposed(self) -> bool:
        return self._disposed

    def update_settings(self, settings: Settings) -> None:
        """
        替换设置快照；从下一次检查开始生效。
        """
        self._settings = settings

    def _signal(self) -> None:
        """
        文件变更回调（可能来自其他线程）。
        """
        if self._disposed:
            return
        try:
            self._loop.call_soon_threadsafe(self._schedule_debounced)
        except RuntimeError:
            # 事件循环已关闭
            logger.debug("忽略 %s 的变更通知：事件循环已关闭", self._manifest_path)

    def _schedule_debounced(self) -> None:
        if self._disposed:
            return
        if self._timer is not None:
            self._timer.cancel()
        self._timer = self._loop.call_later(self._debounce_s, self._fire)

    def _fire(self) -> None:
        self._timer = None
        self.check()

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def check(self) -> asyncio.Task[ResultSet | None] | None:
        """
        立即触发检查（跳过去抖）；已有检查在执行时合并为一次补跑。
        """
        if self._disposed:
            return None
        self._cancel_timer()
        if self._task is not None and not self._task.done():
            self._rerun = True
            return self._task
        self._task = self._loop.create_task(self._run_once())
        self._task.add_done_callback(self._on_run_done)
        return self._task

    async def _run_once(self) -> ResultSet | None:
        settings = self._settings
        try:
            result = await self._run(self._manifest_path, settings)
        except Exception:
            logger.exception("检查 %s 失败", self._manifest_path)
            return None
        self.last_result = result
        if self._on_result is not None and not self._disposed:
            try:
                self._on_result(result, settings)
            except Exception:
                logger.exception("处理 %s 的检查结果失败", self._manifest_path)
        return result

    def _on_run_done(self, _task: asyncio.Task[ResultSet | None]) -> None:
        if self._rerun and not self._disposed:
            self._rerun = False
            self.check()

    async def wait_idle(self) -> None:
        """
        等待去抖计时与正在进行（及补跑）的检查全部结束。
        """
        while True:
            task = self._task
            if task is not None and not task.done():
                await asyncio.wait([task])
                continue
            if self._rerun and not self._disposed:
                await asyncio.sleep(0)
                continue
            if self._timer is not None:
                await asyncio.sleep(min(self._debounce_s, 0.05) or 0.01)
                continue
            return

    def dispose(self) -> None:
        """
        释放文件监听；可重复调用。之后的文件变更与 check() 都不会再触发检查。
        """
        if self._disposed:
            return
        self._disposed = True
        self._rerun = False
        self._cancel_timer()
        self._subscription.close()
