"""依赖更新数据模型

数据类:
- Dependency / Manifest: 依赖声明（只读）
- IndexEntry / RepositoryIndex: 仓库索引
- ResolvedDependency: 约束解析结果
- DependencyOutcome / UpdateReport: 单次更新的结果报告
- DependencyStatus: dep list 的本地状态
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

ARCHIVE_SUFFIX = ".tgz"


def archive_name(name: str, version: str) -> str:
    """依赖归档在 charts/ 下的规范文件名"""
    return f"{name}-{version}{ARCHIVE_SUFFIX}"


@dataclass(frozen=True)
class Dependency:
    """requirements.yaml 中的单个依赖声明"""

    name: str
    version: str        # 版本约束，如 "0.1.0"、"^1.2.0"、">=1.0 <2.0"
    repository: str     # 仓库 URL 或 @alias


@dataclass
class Manifest:
    """一个 chart 的依赖清单，保持声明顺序"""

    bundle_path: Path
    dependencies: list[Dependency] = field(default_factory=list)

    def names(self) -> list[str]:
        return [d.name for d in self.dependencies]


@dataclass(frozen=True)
class IndexEntry:
    """仓库索引中某个 chart 的一个版本"""

    name: str
    version: str
    digest: str
    urls: tuple[str, ...] = ()
    created: str = ""
    description: str = ""


@dataclass
class RepositoryIndex:
    """单个仓库的索引：chart 名 -> 按版本降序排列的条目"""

    repository: str
    url: str = ""
    entries: dict[str, list[IndexEntry]] = field(default_factory=dict)
    generated: str = ""

    def versions_of(self, chart: str) -> list[IndexEntry]:
        return list(self.entries.get(chart, []))


@dataclass(frozen=True)
class ResolvedDependency:
    """约束解析结果；digest 原样来自索引，不在此阶段计算"""

    name: str
    version: str
    digest: str
    url: str
    repository: str = ""

    @property
    def filename(self) -> str:
        return archive_name(self.name, self.version)


@dataclass
class DependencyOutcome:
    """单个依赖的更新结果"""

    name: str
    version: str
    repository: str
    digest: str
    path: Path
    status: str  # "installed" / "unchanged"


@dataclass
class UpdateReport:
    """一次依赖更新的汇总报告"""

    bundle_path: Path
    outcomes: list[DependencyOutcome] = field(default_factory=list)
    removed: list[str] = field(default_factory=list)
    refreshed: list[str] = field(default_factory=list)
    refresh_failed: dict[str, str] = field(default_factory=dict)

    @property
    def installed(self) -> list[str]:
        return [o.name for o in self.outcomes if o.status == "installed"]


@dataclass
class DependencyStatus:
    """dep list 输出的单行状态"""

    name: str
    version: str
    repository: str
    status: str  # "ok" / "missing" / "wrong version" / "unpacked"
