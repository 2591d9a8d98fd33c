"""集中配置管理

home 目录布局:
  <home>/repository/repositories.yml     已注册的 chart 仓库
  <home>/repository/cache/<name>-index.yaml  仓库索引缓存

Config 作为显式参数传给 IndexCache / RepoRegistry / DependencyManager，
不存在进程级的全局 home 目录。
"""

from __future__ import annotations

import logging
import os
from dataclasses import asdict, dataclass, field
from pathlib import Path

from chartdep.core.exceptions import ConfigError
from chartdep.utils.yaml_io import load_yaml

logger = logging.getLogger(__name__)

DEFAULT_HOME = "~/.chartdep"


@dataclass
class Config:
    """chartdep 配置"""

    # 目录
    home: str = DEFAULT_HOME
    dependency_dir: str = "charts"

    # 网络
    fetch_timeout: float = 60.0

    # 执行
    max_workers: int = 1

    # 自定义扩展 (放不到字段里的配置项)
    extra: dict = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.max_workers < 1:
            raise ConfigError(f"max_workers 必须 >= 1: {self.max_workers}")
        if self.fetch_timeout <= 0:
            raise ConfigError(f"fetch_timeout 必须为正数: {self.fetch_timeout}")

    @property
    def home_path(self) -> Path:
        return Path(os.path.expanduser(self.home))

    @property
    def repository_dir(self) -> Path:
        return self.home_path / "repository"

    @property
    def repositories_file(self) -> Path:
        return self.repository_dir / "repositories.yml"

    @property
    def cache_dir(self) -> Path:
        return self.repository_dir / "cache"

    @classmethod
    def from_file(cls, path: str | Path, **overrides: object) -> Config:
        """从 YAML 文件加载配置，不存在则使用默认值；overrides 优先级最高"""
        data = load_yaml(path)
        known = {f.name for f in cls.__dataclass_fields__.values()}
        matched = {k: v for k, v in data.items() if k in known and k != "extra"}
        extra = {k: v for k, v in data.items() if k not in known}
        matched.update({k: v for k, v in overrides.items() if v is not None})
        try:
            cfg = cls(**matched)
        except TypeError as e:
            raise ConfigError(f"配置文件无效: {path}: {e}") from e
        cfg.extra = extra
        if data:
            logger.info("配置已加载: %s", path)
        return cfg

    def to_dict(self) -> dict:
        return asdict(self)
