"""chart 仓库注册表

repositories.yml 格式:

    repositories:
      stable:
        url: https://charts.example.com/stable
      test:
        url: http://127.0.0.1:8879

依赖清单中的 repository 字段可以写仓库 URL，也可以用 ``@name`` /
``alias:name`` 直接引用已注册的仓库名。
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

from chartdep.core.exceptions import RepositoryUnknown, ValidationError
from chartdep.utils.net import normalize_repo_url, validate_url_scheme
from chartdep.utils.yaml_io import load_yaml, save_yaml

logger = logging.getLogger(__name__)


class YamlRegistry:
    """YAML 文件注册表基类

    子类用法:
        class MyRegistry(YamlRegistry):
            section_key = "items"
    """

    section_key: str = "entries"

    def __init__(self, registry_file: str | Path) -> None:
        self.registry_file = Path(registry_file)
        self._data: dict[str, Any] = load_yaml(self.registry_file)

    def _section(self) -> dict[str, dict[str, Any]]:
        """获取当前 section 字典（自动创建）"""
        section = self._data.get(self.section_key)
        if not isinstance(section, dict):
            section = {}
            self._data[self.section_key] = section
        return section

    def _save(self) -> None:
        save_yaml(self.registry_file, self._data)

    def _put(self, name: str, entry: dict[str, Any]) -> dict[str, Any]:
        self._section()[name] = entry
        self._save()
        return entry

    def _get_raw(self, name: str) -> dict[str, Any] | None:
        return self._section().get(name)

    def _list_raw(self) -> list[dict[str, Any]]:
        """列出所有条目（带 name 字段），按名称排序"""
        return [{"name": k, **(v or {})} for k, v in sorted(self._section().items())]

    def _remove(self, name: str) -> bool:
        section = self._section()
        if name not in section:
            return False
        del section[name]
        self._save()
        return True


class RepoRegistry(YamlRegistry):
    """已注册 chart 仓库（名称 -> URL）"""

    section_key = "repositories"

    def add(self, name: str, url: str) -> dict[str, Any]:
        if not name or "/" in name:
            raise ValidationError(f"非法的仓库名: {name!r}")
        validate_url_scheme(url, context=f"repo {name}")
        entry = self._put(name, {"url": normalize_repo_url(url)})
        logger.info("已注册仓库: %s -> %s", name, entry["url"])
        return entry

    def remove(self, name: str) -> bool:
        return self._remove(name)

    def get(self, name: str) -> dict[str, Any] | None:
        return self._get_raw(name)

    def url_of(self, name: str) -> str:
        entry = self._get_raw(name)
        if not entry or not entry.get("url"):
            raise RepositoryUnknown(f"仓库 '{name}' 未注册")
        return normalize_repo_url(str(entry["url"]))

    def names(self) -> list[str]:
        return sorted(self._section())

    def list_repos(self) -> list[dict[str, Any]]:
        return self._list_raw()

    def name_for(self, reference: str) -> str:
        """把依赖声明中的仓库引用解析为已注册的仓库名

        支持:
          - ``@stable`` / ``alias:stable``: 直接按名称引用
          - ``https://...``: 按 URL 查找（忽略末尾斜杠）

        Raises:
            RepositoryUnknown: 引用的仓库未注册
        """
        ref = reference.strip()
        alias = ""
        if ref.startswith("@"):
            alias = ref[1:]
        elif ref.startswith("alias:"):
            alias = ref[len("alias:"):]
        if alias:
            if alias not in self._section():
                raise RepositoryUnknown(f"仓库别名 '{alias}' 未注册")
            return alias

        wanted = normalize_repo_url(ref)
        for name, entry in sorted(self._section().items()):
            if normalize_repo_url(str((entry or {}).get("url", ""))) == wanted:
                return name
        raise RepositoryUnknown(
            f"没有与 URL 对应的仓库定义: {reference}，"
            f"请先执行 'chartdep repo add'"
        )
