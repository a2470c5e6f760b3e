from __future__ import annotations

from dataclasses import replace
from pathlib import Path

from textual.app import App, ComposeResult
from textual.binding import Binding
from textual.containers import Horizontal
from textual.widgets import DataTable, Footer, Header, Static

from npm_lens.app import check_with_config
from npm_lens.config import AppConfig
from npm_lens.models import DependencyOutcome, ResultSet, Settings
from npm_lens.notifications import Severity, build_notification
from npm_lens.watcher import ManifestWatcher


class NpmLensApp(App[None]):
    """
    npm-lens 的 TUI 应用：package.json 变更后自动刷新。
    """

    CSS = """
    DataTable {
        height: 1fr;
    }
    #details {
        height: 12;
        border: solid $primary;
        padding: 1;
    }
    """

    BINDINGS = [
        Binding("q", "quit", "退出"),
        Binding("r", "refresh", "立即检查"),
        Binding("b", "toggle_beta", "切换 beta 渠道"),
        Binding("d", "toggle_dev", "切换 devDependencies"),
    ]

    def __init__(self, manifest_path: Path, *, config: AppConfig | None = None) -> None:
        super().__init__()
        self._manifest_path = manifest_path
        self._config = config or AppConfig()
        self._settings = self._config.settings
        self._result: ResultSet | None = None
        self._watcher: ManifestWatcher | None = None

    def compose(self) -> ComposeResult:
        yield Header()
        with Horizontal():
            yield DataTable(id="table")
        yield Static(id="details")
        yield Footer()

    async def on_mount(self) -> None:
        table = self.query_one("#table", DataTable)
        table.add_columns("分组", "包", "范围", "本地", "latest", "目标", "状态")
        self.query_one("#details", Static).update("正在检查依赖，请稍候…")
        self._watcher = ManifestWatcher(
            self._manifest_path,
            self._settings,
            run=self._run_check,
            on_result=self._on_result,
            debounce_s=self._config.debounce_s,
        )

    def on_unmount(self) -> None:
        if self._watcher is not None:
            self._watcher.dispose()

    async def _run_check(self, manifest_path: Path, settings: Settings) -> ResultSet:
        return await check_with_config(manifest_path, settings, config=self._config)

    def _on_result(self, result: ResultSet, settings: Settings) -> None:
        self._result = result
        self._render_table(result)
        notification = build_notification(result, settings)
        if notification is not None:
            severity = "warning" if notification.severity == Severity.WARNING else "information"
            self.notify(notification.detail, title=notification.title, severity=severity)
        summary = f"完成：{len(result.outcomes)} 个依赖，发起查询 {result.fetched}。"
        if result.error:
            summary = f"{summary}\n错误：{result.error}"
        self.query_one("#details", Static).update(summary)

    def _render_table(self, result: ResultSet) -> None:
        table = self.query_one("#table", DataTable)
        table.clear()
        for o in result.outcomes:
            table.add_row(
                "dev" if o.is_dev else "prod",
                o.name,
                o.version_range,
                o.local_version or "-",
                o.npm_version_latest or "-",
                o.npm_version or "-",
                o.status.value,
            )

    def _selected_outcome(self) -> DependencyOutcome | None:
        table = self.query_one("#table", DataTable)
        if table.cursor_row is None or self._result is None:
            return None
        row_index = table.cursor_row
        if row_index < 0 or row_index >= len(self._result.outcomes):
            return None
        return self._result.outcomes[row_index]

    def on_data_table_row_highlighted(self, event: DataTable.RowHighlighted) -> None:
        o = self._selected_outcome()
        if not o:
            return
        details = [
            f"包：{o.name}（{'dev' if o.is_dev else 'prod'}）",
            f"范围：{o.version_range}",
            f"本地：{o.local_version or '-'}",
            f"latest：{o.npm_version_latest or '-'}",
            f"beta：{o.npm_version_beta or '-'}",
            f"目标：{o.npm_version or '-'}",
            f"状态：{o.status.value}",
            f"错误：{o.error or '-'}",
        ]
        self.query_one("#details", Static).update("\n".join(details))

    def _apply_settings(self, settings: Settings) -> None:
        self._settings = settings
        if self._watcher is not None:
            self._watcher.update_settings(settings)
            self._watcher.check()

    def action_refresh(self) -> None:
        if self._watcher is not None:
            self._watcher.check()

    def action_toggle_beta(self) -> None:
        self._apply_settings(replace(self._settings, use_beta_channel=not self._settings.use_beta_channel))

    def action_toggle_dev(self) -> None:
        self._apply_settings(
            replace(self._settings, check_dev_dependencies=not self._settings.check_dev_dependencies)
        )


def run_tui(manifest_path: Path, *, config: AppConfig | None = None) -> int:
    """
    运行 TUI（无子命令时的默认入口）。
    """
    app = NpmLensApp(manifest_path, config=config)
    app.run()
    return 0
