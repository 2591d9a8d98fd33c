"""依赖约束解析器

职责:
- 把依赖声明的仓库引用映射到已注册仓库名
- 在该仓库的本地索引中找出满足约束的最高版本
- 给出下载地址（首选 urls[0]，相对地址基于仓库 URL 展开）

仅查询本地缓存，不做任何网络访问。
"""

from __future__ import annotations

import logging

from chartdep.core.dep.constraint import parse_constraint, parse_version
from chartdep.core.dep.index_cache import IndexCache
from chartdep.core.dep.models import Dependency, ResolvedDependency
from chartdep.core.exceptions import (
    NoMatchingVersion,
    RepositoryUnknown,
    ValidationError,
)
from chartdep.core.registry import RepoRegistry
from chartdep.utils.net import resolve_chart_url

logger = logging.getLogger(__name__)


class ChartResolver:
    """依赖约束解析器 - 仅做本地索引查找"""

    def __init__(self, cache: IndexCache, registry: RepoRegistry) -> None:
        self.cache = cache
        self.registry = registry

    def repository_for(self, dependency: Dependency) -> str:
        """依赖引用的仓库名"""
        try:
            return self.registry.name_for(dependency.repository)
        except RepositoryUnknown as e:
            raise RepositoryUnknown(str(e), dependency=dependency.name) from e

    def resolve(self, dependency: Dependency) -> ResolvedDependency:
        """解析单个依赖

        Raises:
            RepositoryUnknown: 仓库未注册或没有本地索引缓存
            NoMatchingVersion: 索引中没有该 chart、没有满足约束的版本，或约束无法解析
        """
        repo = self.repository_for(dependency)
        try:
            index = self.cache.get(repo)
        except RepositoryUnknown as e:
            raise RepositoryUnknown(str(e), dependency=dependency.name) from e

        try:
            constraint = parse_constraint(dependency.version)
        except ValidationError as e:
            raise NoMatchingVersion(str(e), dependency=dependency.name) from e

        candidates = index.versions_of(dependency.name)
        if not candidates:
            raise NoMatchingVersion(
                f"chart '{dependency.name}' 不在仓库 '{repo}' 的索引中",
                dependency=dependency.name,
            )

        # 索引已按版本降序排列，第一个满足约束的即最高版本
        for entry in candidates:
            version = parse_version(entry.version)
            if version is None or not constraint.satisfies(version):
                continue
            if not entry.urls:
                raise NoMatchingVersion(
                    f"{entry.name}@{entry.version} 在索引中没有下载地址",
                    dependency=dependency.name,
                )
            repo_url = index.url or self.registry.url_of(repo)
            resolved = ResolvedDependency(
                name=dependency.name,
                version=entry.version,
                digest=entry.digest,
                url=resolve_chart_url(repo_url, entry.urls[0]),
                repository=repo,
            )
            logger.info(
                "已解析: %s %s -> %s (%s)",
                dependency.name, dependency.version or "*", entry.version, repo,
            )
            return resolved

        available = ", ".join(e.version for e in candidates)
        raise NoMatchingVersion(
            f"仓库 '{repo}' 中没有满足约束 '{dependency.version}' 的版本。"
            f"可用: {available}",
            dependency=dependency.name,
        )
