"""requirements.yaml / requirements.lock 读写测试"""

from __future__ import annotations

from pathlib import Path

import pytest
import yaml

from chartdep.core.chart import (
    load_lock,
    load_manifest,
    manifest_digest,
    write_lock,
)
from chartdep.core.dep.models import Dependency, Manifest, ResolvedDependency
from chartdep.core.exceptions import ValidationError


def _write_manifest(bundle: Path, deps: object) -> None:
    bundle.mkdir(parents=True, exist_ok=True)
    (bundle / "requirements.yaml").write_text(
        yaml.dump({"dependencies": deps}), encoding="utf-8",
    )


class TestLoadManifest:
    def test_keeps_declaration_order(self, tmp_path: Path) -> None:
        _write_manifest(tmp_path, [
            {"name": "reqtest", "version": "0.1.0", "repository": "http://r"},
            {"name": "compressedchart", "version": "^0.1.0", "repository": "@test"},
        ])
        manifest = load_manifest(tmp_path)
        assert manifest.names() == ["reqtest", "compressedchart"]
        assert manifest.dependencies[1] == Dependency("compressedchart", "^0.1.0", "@test")

    def test_missing_requirements_is_empty(self, tmp_path: Path) -> None:
        assert load_manifest(tmp_path).dependencies == []

    def test_missing_bundle_dir(self, tmp_path: Path) -> None:
        with pytest.raises(ValidationError, match="chart 目录不存在"):
            load_manifest(tmp_path / "nope")

    def test_dependencies_not_a_list(self, tmp_path: Path) -> None:
        _write_manifest(tmp_path, {"reqtest": "0.1.0"})
        with pytest.raises(ValidationError, match="必须是数组"):
            load_manifest(tmp_path)

    def test_collects_all_errors(self, tmp_path: Path) -> None:
        _write_manifest(tmp_path, [
            {"version": "1.0.0", "repository": "http://r"},
            {"name": "a", "version": "1.0.0"},
            {"name": "b", "repository": "http://r"},
            {"name": "b", "repository": "http://r"},
        ])
        with pytest.raises(ValidationError) as excinfo:
            load_manifest(tmp_path)
        assert excinfo.value.details == [
            "第 1 项缺少 name", "a: 缺少 repository", "b: 依赖名重复",
        ]

    def test_broken_yaml(self, tmp_path: Path) -> None:
        (tmp_path / "requirements.yaml").write_text("dependencies: [\n", encoding="utf-8")
        with pytest.raises(ValidationError, match="无法解析依赖清单"):
            load_manifest(tmp_path)


class TestLockFile:
    def test_digest_ignores_key_order(self, tmp_path: Path) -> None:
        a = Manifest(tmp_path, [Dependency("x", "1.0.0", "http://r")])
        b = Manifest(tmp_path / "other", [Dependency(repository="http://r", version="1.0.0", name="x")])
        assert manifest_digest(a) == manifest_digest(b)
        assert manifest_digest(a).startswith("sha256:")

    def test_write_and_load(self, tmp_path: Path) -> None:
        manifest = Manifest(tmp_path, [Dependency("reqtest", "^0.1.0", "@test")])
        resolved = [ResolvedDependency("reqtest", "0.1.2", "abc", "http://r/x.tgz", "test")]
        write_lock(manifest, resolved)

        lock = load_lock(tmp_path)
        assert lock is not None
        assert lock.digest == manifest_digest(manifest)
        assert lock.generated
        dep = lock.dependencies[0]
        assert (dep.name, dep.version, dep.repository, dep.digest) == (
            "reqtest", "0.1.2", "@test", "abc",
        )

    def test_no_lock(self, tmp_path: Path) -> None:
        assert load_lock(tmp_path) is None
