"""仓库索引本地缓存

每个仓库一个缓存文件: <home>/repository/cache/<name>-index.yaml

- get(): 只读查询，从不触发网络访问；没有缓存时报 RepositoryUnknown
- refresh(): 下载 <url>/index.yaml，校验后整体替换缓存文件（不合并）
- list(): 已有缓存的仓库名

index.yaml 格式:

    apiVersion: v1
    entries:
      reqtest:
        - name: reqtest
          version: 0.1.0
          digest: 2b1c...
          urls:
            - charts/reqtest-0.1.0.tgz
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import yaml

from chartdep.core.dep.constraint import parse_version
from chartdep.core.dep.fetcher import ArchiveFetcher
from chartdep.core.dep.models import IndexEntry, RepositoryIndex
from chartdep.core.exceptions import RepositoryUnknown, ValidationError
from chartdep.utils.net import normalize_repo_url
from chartdep.utils.yaml_io import atomic_write, parse_yaml

logger = logging.getLogger(__name__)

INDEX_SUFFIX = "-index.yaml"


def parse_index(data: dict[str, Any], repository: str, url: str = "") -> RepositoryIndex:
    """把 index.yaml 内容转换为 RepositoryIndex

    每个 chart 的版本按降序排列；无法解析的版本号排在最后，保持原顺序。

    Raises:
        ValidationError: 文档结构无效，或同一 chart 出现重复版本
    """
    raw_entries = data.get("entries") or {}
    if not isinstance(raw_entries, dict):
        raise ValidationError(f"仓库 '{repository}' 的索引缺少 entries 字典")

    errors: list[str] = []
    entries: dict[str, list[IndexEntry]] = {}
    for chart, versions in raw_entries.items():
        if not isinstance(versions, list):
            errors.append(f"{chart}: 版本列表必须是数组")
            continue
        seen: set[str] = set()
        parsed: list[IndexEntry] = []
        for item in versions:
            if not isinstance(item, dict) or not item.get("version"):
                errors.append(f"{chart}: 条目缺少 version")
                continue
            version = str(item["version"])
            if version in seen:
                errors.append(f"{chart}: 重复的版本 {version}")
                continue
            seen.add(version)
            urls = item.get("urls") or []
            if isinstance(urls, str):
                urls = [urls]
            parsed.append(IndexEntry(
                name=str(item.get("name") or chart),
                version=version,
                digest=str(item.get("digest") or ""),
                urls=tuple(str(u) for u in urls),
                created=str(item.get("created") or ""),
                description=str(item.get("description") or ""),
            ))
        entries[str(chart)] = _sort_by_version(parsed)

    if errors:
        raise ValidationError(f"仓库 '{repository}' 的索引无效", details=errors)

    return RepositoryIndex(
        repository=repository,
        url=normalize_repo_url(url),
        entries=entries,
        generated=str(data.get("generated") or ""),
    )


def _sort_by_version(entries: list[IndexEntry]) -> list[IndexEntry]:
    valid = [(parse_version(e.version), e) for e in entries]
    ordered = sorted(
        ((v, e) for v, e in valid if v is not None),
        key=lambda pair: pair[0], reverse=True,
    )
    return [e for _, e in ordered] + [e for v, e in valid if v is None]


class IndexCache:
    """按仓库名缓存的索引"""

    def __init__(self, cache_dir: Path, fetcher: ArchiveFetcher | None = None) -> None:
        self.cache_dir = Path(cache_dir)
        self.fetcher = fetcher or ArchiveFetcher()
        self._memo: dict[str, RepositoryIndex] = {}

    def index_path(self, repository: str) -> Path:
        return self.cache_dir / f"{repository}{INDEX_SUFFIX}"

    def get(self, repository: str) -> RepositoryIndex:
        """读取缓存的索引

        Raises:
            RepositoryUnknown: 该仓库从未刷新过
            ValidationError: 缓存文件损坏
        """
        if repository in self._memo:
            return self._memo[repository]

        path = self.index_path(repository)
        if not path.is_file():
            raise RepositoryUnknown(
                f"仓库 '{repository}' 没有本地索引缓存: {path}",
            )
        index = self._load(path.read_bytes(), repository, source=str(path))
        self._memo[repository] = index
        return index

    def refresh(self, repository: str, url: str) -> RepositoryIndex:
        """下载远程索引并整体替换本地缓存

        Raises:
            FetchFailed: 下载失败
            ValidationError: 远程索引无效（此时旧缓存保持不变）
        """
        index_url = f"{normalize_repo_url(url)}/index.yaml"
        logger.info("刷新仓库索引: %s <- %s", repository, index_url)
        raw = self.fetcher.fetch_bytes(index_url)
        index = self._load(raw, repository, source=index_url, url=url)

        atomic_write(self.index_path(repository), raw)
        self._memo[repository] = index
        logger.info(
            "仓库 %s 索引已更新: %d 个 chart", repository, len(index.entries),
        )
        return index

    def remove(self, repository: str) -> bool:
        """删除仓库的本地索引缓存，返回缓存文件是否存在"""
        self._memo.pop(repository, None)
        path = self.index_path(repository)
        if not path.is_file():
            return False
        path.unlink()
        logger.info("已删除仓库 %s 的索引缓存", repository)
        return True

    def list(self) -> set[str]:
        if not self.cache_dir.is_dir():
            return set()
        return {
            p.name[: -len(INDEX_SUFFIX)]
            for p in self.cache_dir.glob(f"*{INDEX_SUFFIX}")
            if p.is_file()
        }

    @staticmethod
    def _load(
        raw: bytes, repository: str, *, source: str, url: str = "",
    ) -> RepositoryIndex:
        try:
            data = parse_yaml(raw, source=source)
        except (yaml.YAMLError, ValueError) as e:
            raise ValidationError(f"无法解析仓库 '{repository}' 的索引: {e}") from e
        return parse_index(data, repository, url=url or str(data.get("url") or ""))
