from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


@dataclass(frozen=True, slots=True)
class Settings:
    """
    单次检查使用的设置快照（运行期间不可变）。
    """

    check_dev_dependencies: bool = True
    use_beta_channel: bool = False
    notify_outdated: bool = True
    notify_update: bool = True


@dataclass(frozen=True, slots=True)
class DependencyDeclaration:
    """
    从 package.json 中抽取出来的一条依赖声明。
    """

    name: str
    version_range: str
    is_dev: bool


class CheckStatus(str, Enum):
    """
    单个依赖项的检查状态。
    """

    UP_TO_DATE = "up_to_date"
    NOT_INSTALLED = "not_installed"
    LOCAL_MISMATCH = "local_mismatch"
    OUTDATED = "outdated"
    UPDATE_OUT_OF_RANGE = "update_out_of_range"
    UNPARSEABLE = "unparseable"
    REGISTRY_ERROR = "registry_error"


@dataclass(frozen=True, slots=True)
class DependencyOutcome:
    """
    单个依赖在一次检查中的结论；各阶段通过 dataclasses.replace 生成新值。
    """

    name: str
    version_range: str
    is_dev: bool
    local_version: str | None = None
    local_outdated: bool = False
    npm_version_latest: str | None = None
    npm_version_beta: str | None = None
    npm_version: str | None = None
    outdated: bool = False
    outdated_not_wanted: bool = False
    error: str | None = None

    @classmethod
    def from_declaration(cls, decl: DependencyDeclaration) -> DependencyOutcome:
        return cls(name=decl.name, version_range=decl.version_range, is_dev=decl.is_dev)

    @property
    def status(self) -> CheckStatus:
        if self.local_version is None:
            return CheckStatus.NOT_INSTALLED
        if self.local_outdated:
            return CheckStatus.LOCAL_MISMATCH
        if self.outdated:
            return CheckStatus.OUTDATED
        if self.outdated_not_wanted:
            return CheckStatus.UPDATE_OUT_OF_RANGE
        if self.error and self.error.startswith("invalid version"):
            return CheckStatus.UNPARSEABLE
        if self.error:
            return CheckStatus.REGISTRY_ERROR
        return CheckStatus.UP_TO_DATE


@dataclass(frozen=True, slots=True)
class ResultSet:
    """
    一次检查的完整结果（按声明顺序排列）。
    """

    manifest_path: str
    outcomes: list[DependencyOutcome]
    fetched: int = 0
    error: str | None = None
