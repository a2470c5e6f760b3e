from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from npm_lens.models import DependencyOutcome, ResultSet, Settings


class Severity(str, Enum):
    INFO = "info"
    WARNING = "warning"


@dataclass(frozen=True, slots=True)
class NotificationGroups:
    """
    按展示类别分组后的依赖结论。
    """

    unresolved: list[DependencyOutcome] = field(default_factory=list)
    outdated: list[DependencyOutcome] = field(default_factory=list)
    not_wanted: list[DependencyOutcome] = field(default_factory=list)

    def is_empty(self) -> bool:
        return not (self.unresolved or self.outdated or self.not_wanted)


@dataclass(frozen=True, slots=True)
class Notification:
    """
    交给通知层展示的一条汇总消息。
    """

    title: str
    severity: Severity
    lines: list[str]

    @property
    def detail(self) -> str:
        return "\n".join(self.lines)


def _category(outcome: DependencyOutcome, settings: Settings) -> str | None:
    if outcome.local_outdated:
        return "unresolved"
    if outcome.outdated and settings.notify_outdated:
        return "outdated"
    if outcome.outdated_not_wanted and settings.notify_update:
        return "not_wanted"
    return None


def group_outcomes(result: ResultSet, settings: Settings) -> NotificationGroups:
    """
    将结果分为三类：未满足、范围内可更新、仅有范围外的新版本。
    """
    groups = NotificationGroups()
    for outcome in result.outcomes:
        category = _category(outcome, settings)
        if category is not None:
            getattr(groups, category).append(outcome)
    return groups


def format_outcome(outcome: DependencyOutcome) -> str:
    if outcome.local_outdated:
        if outcome.local_version is None:
            return f"{outcome.name} 需要安装（{outcome.version_range}）"
        return f"{outcome.name} 需要更新：{outcome.local_version} 不满足 {outcome.version_range}"
    if outcome.outdated:
        return f"{outcome.name} 可更新：{outcome.local_version} => {outcome.npm_version}"
    return f"{outcome.name} 有范围外的新版本：{outcome.local_version} => {outcome.npm_version}"


def build_notification(result: ResultSet, settings: Settings) -> Notification | None:
    """
    生成一条通知；没有需要提示的依赖时返回 None。
    """
    groups = group_outcomes(result, settings)
    if groups.is_empty():
        return None
    lines = [format_outcome(o) for o in result.outcomes if _category(o, settings) is not None]
    severity = Severity.WARNING if groups.unresolved else Severity.INFO
    return Notification(title=result.manifest_path, severity=severity, lines=lines)
