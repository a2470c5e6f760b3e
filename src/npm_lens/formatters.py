from __future__ import annotations

import json
from dataclasses import asdict
from typing import Any, TextIO

from rich.console import Console
from rich.table import Table

from npm_lens.models import DependencyOutcome, ResultSet
from npm_lens.notifications import Notification, Severity


def _group(outcome: DependencyOutcome) -> str:
    return "dev" if outcome.is_dev else "prod"


def result_to_json_obj(result: ResultSet) -> dict[str, Any]:
    """
    将结果转换为可 JSON 序列化的字典结构（附带每项的 status）。
    """
    data = asdict(result)
    for item, outcome in zip(data.get("outcomes", []), result.outcomes):
        item["status"] = outcome.status.value
    return data


def render_json(result: ResultSet) -> str:
    """
    渲染 JSON 输出。
    """
    return json.dumps(result_to_json_obj(result), ensure_ascii=False, indent=2)


def render_markdown(result: ResultSet) -> str:
    """
    渲染 Markdown 报告（表格 + 简要统计）。
    """
    lines: list[str] = []
    lines.append(f"# npm-lens 报告\n\n- 文件：`{result.manifest_path}`\n- 发起查询：{result.fetched}\n")
    if result.error:
        lines.append(f"- 错误：{result.error}\n")
    lines.append("| 分组 | 包 | 范围 | 本地 | latest | 目标 | 状态 | 错误 |")
    lines.append("|---|---|---|---|---|---|---|---|")
    for o in result.outcomes:
        lines.append(
            f"| {_group(o)} | {o.name} | {o.version_range} | {o.local_version or '-'} "
            f"| {o.npm_version_latest or '-'} | {o.npm_version or '-'} | {o.status.value} | {o.error or '-'} |"
        )
    return "\n".join(lines) + "\n"


def print_table(result: ResultSet, *, file: TextIO | None = None) -> None:
    """
    以控制台表格形式输出结果。
    """
    console = Console(file=file)
    table = Table(title=f"npm-lens 依赖检查：{result.manifest_path}")
    table.add_column("分组", no_wrap=True)
    table.add_column("包", no_wrap=True)
    table.add_column("范围")
    table.add_column("本地", no_wrap=True)
    table.add_column("latest", no_wrap=True)
    table.add_column("beta", no_wrap=True)
    table.add_column("目标", no_wrap=True)
    table.add_column("状态", no_wrap=True)
    table.add_column("错误")
    for o in result.outcomes:
        table.add_row(
            _group(o),
            o.name,
            o.version_range,
            o.local_version or "-",
            o.npm_version_latest or "-",
            o.npm_version_beta or "-",
            o.npm_version or "-",
            o.status.value,
            o.error or "-",
        )
    console.print(table)
    if result.error:
        console.print(f"[red]错误：{result.error}[/red]")
    console.print(f"发起查询：{result.fetched}")


def print_notification(notification: Notification | None, *, file: TextIO | None = None) -> None:
    """
    输出一条通知；None 时提示没有需要提示的依赖。
    """
    console = Console(file=file)
    if notification is None:
        console.print("[green]没有需要提示的依赖。[/green]")
        return
    style = "yellow" if notification.severity == Severity.WARNING else "cyan"
    console.print(f"[bold {style}]{notification.title}[/bold {style}]")
    for line in notification.lines:
        console.print(f"  {line}", markup=False, highlight=False)
