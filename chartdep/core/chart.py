"""chart 依赖清单与锁文件

requirements.yaml:

    dependencies:
      - name: reqtest
        version: 0.1.0
        repository: http://127.0.0.1:8879

requirements.lock 在每次更新成功后写入，记录实际安装的版本与索引摘要。
清单摘要 (digest) 用于判断锁文件是否仍与清单一致。
"""

from __future__ import annotations

import hashlib
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path

import yaml

from chartdep.core.dep.models import Dependency, Manifest, ResolvedDependency
from chartdep.core.exceptions import ValidationError
from chartdep.utils.yaml_io import load_yaml, save_yaml

logger = logging.getLogger(__name__)

REQUIREMENTS_FILE = "requirements.yaml"
LOCK_FILE = "requirements.lock"


@dataclass
class LockedDependency:
    name: str
    version: str
    repository: str
    digest: str = ""


@dataclass
class LockFile:
    """requirements.lock 内容"""

    digest: str
    generated: str = ""
    dependencies: list[LockedDependency] = field(default_factory=list)


def load_manifest(bundle_path: str | Path) -> Manifest:
    """读取 chart 目录下的 requirements.yaml

    Raises:
        ValidationError: chart 目录不存在、清单格式错误或依赖名重复
    """
    bundle = Path(bundle_path)
    if not bundle.is_dir():
        raise ValidationError(f"chart 目录不存在: {bundle}")

    path = bundle / REQUIREMENTS_FILE
    try:
        data = load_yaml(path)
    except (yaml.YAMLError, ValueError) as e:
        raise ValidationError(f"无法解析依赖清单: {path}: {e}") from e

    raw = data.get("dependencies") or []
    if not isinstance(raw, list):
        raise ValidationError(f"{path}: dependencies 必须是数组")

    errors: list[str] = []
    deps: list[Dependency] = []
    seen: set[str] = set()
    for i, item in enumerate(raw):
        if not isinstance(item, dict):
            errors.append(f"第 {i + 1} 项不是字典")
            continue
        name = str(item.get("name") or "").strip()
        repository = str(item.get("repository") or "").strip()
        if not name:
            errors.append(f"第 {i + 1} 项缺少 name")
            continue
        if not repository:
            errors.append(f"{name}: 缺少 repository")
            continue
        if name in seen:
            errors.append(f"{name}: 依赖名重复")
            continue
        seen.add(name)
        deps.append(Dependency(
            name=name,
            version=str(item.get("version") or "").strip(),
            repository=repository,
        ))

    if errors:
        raise ValidationError(f"依赖清单无效: {path}", details=errors)
    logger.debug("已加载 %d 个依赖声明: %s", len(deps), path)
    return Manifest(bundle_path=bundle, dependencies=deps)


def manifest_digest(manifest: Manifest) -> str:
    """清单依赖列表的 sha256 摘要（与字段顺序、空白无关）"""
    payload = [
        {"name": d.name, "version": d.version, "repository": d.repository}
        for d in manifest.dependencies
    ]
    data = json.dumps(payload, sort_keys=True, separators=(",", ":"))
    return "sha256:" + hashlib.sha256(data.encode("utf-8")).hexdigest()


def write_lock(manifest: Manifest, resolved: list[ResolvedDependency]) -> Path:
    """更新成功后写入 requirements.lock"""
    by_name = {d.name: d for d in manifest.dependencies}
    path = manifest.bundle_path / LOCK_FILE
    save_yaml(path, {
        "generated": datetime.now(tz=timezone.utc).isoformat(),
        "digest": manifest_digest(manifest),
        "dependencies": [
            {
                "name": r.name,
                "version": r.version,
                "repository": by_name[r.name].repository,
                "digest": r.digest,
            }
            for r in resolved
        ],
    })
    logger.info("锁文件已写入: %s", path)
    return path


def load_lock(bundle_path: str | Path) -> LockFile | None:
    """读取 requirements.lock，不存在时返回 None"""
    path = Path(bundle_path) / LOCK_FILE
    if not path.is_file():
        return None
    try:
        data = load_yaml(path)
    except (yaml.YAMLError, ValueError) as e:
        raise ValidationError(f"无法解析锁文件: {path}: {e}") from e
    deps = [
        LockedDependency(
            name=str(item.get("name", "")),
            version=str(item.get("version", "")),
            repository=str(item.get("repository", "")),
            digest=str(item.get("digest", "")),
        )
        for item in data.get("dependencies") or []
        if isinstance(item, dict)
    ]
    return LockFile(
        digest=str(data.get("digest", "")),
        generated=str(data.get("generated", "")),
        dependencies=deps,
    )
