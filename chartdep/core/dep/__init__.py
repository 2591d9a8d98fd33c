"""chart 依赖解析与同步

模块划分:
- models.py: 数据模型
- constraint.py: 版本约束（精确 / 范围）
- index_cache.py: 仓库索引本地缓存
- resolver.py: 约束 -> 具体版本 + 下载地址
- fetcher.py: 归档下载
- verifier.py: sha256 校验
- reconciler.py: charts/ 目录全有或全无替换
"""

from chartdep.core.dep.constraint import (
    Constraint,
    ExactConstraint,
    RangeConstraint,
    parse_constraint,
)
from chartdep.core.dep.fetcher import ArchiveFetcher
from chartdep.core.dep.index_cache import IndexCache
from chartdep.core.dep.models import (
    Dependency,
    IndexEntry,
    Manifest,
    RepositoryIndex,
    ResolvedDependency,
    UpdateReport,
)
from chartdep.core.dep.reconciler import Reconciler, bundle_lock
from chartdep.core.dep.resolver import ChartResolver

__all__ = [
    "ArchiveFetcher",
    "ChartResolver",
    "Constraint",
    "Dependency",
    "ExactConstraint",
    "IndexCache",
    "IndexEntry",
    "Manifest",
    "RangeConstraint",
    "Reconciler",
    "RepositoryIndex",
    "ResolvedDependency",
    "UpdateReport",
    "bundle_lock",
    "parse_constraint",
]
