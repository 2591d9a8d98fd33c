"""仓库索引缓存测试"""

from __future__ import annotations

from pathlib import Path

import pytest
import yaml

from chartdep.core.dep.fetcher import ArchiveFetcher
from chartdep.core.dep.index_cache import IndexCache, parse_index
from chartdep.core.exceptions import FetchFailed, RepositoryUnknown, ValidationError
from conftest import ChartRepo


def _index_doc(**entries: list[dict]) -> dict:
    return {"apiVersion": "v1", "entries": entries}


class TestParseIndex:
    def test_versions_sorted_descending(self) -> None:
        doc = _index_doc(mariadb=[
            {"version": "0.3.0", "digest": "a", "urls": ["a.tgz"]},
            {"version": "0.10.0", "digest": "b", "urls": ["b.tgz"]},
            {"version": "0.9.1", "digest": "c", "urls": ["c.tgz"]},
        ])
        index = parse_index(doc, "test", "http://repo/")
        assert [e.version for e in index.versions_of("mariadb")] == ["0.10.0", "0.9.1", "0.3.0"]
        assert index.url == "http://repo"

    def test_unparsable_versions_last(self) -> None:
        doc = _index_doc(x=[
            {"version": "nightly", "digest": "a"},
            {"version": "1.0.0", "digest": "b"},
        ])
        assert [e.version for e in parse_index(doc, "t").versions_of("x")] == ["1.0.0", "nightly"]

    def test_single_url_string_accepted(self) -> None:
        doc = _index_doc(x=[{"version": "1.0.0", "digest": "d", "urls": "x-1.0.0.tgz"}])
        assert parse_index(doc, "t").versions_of("x")[0].urls == ("x-1.0.0.tgz",)

    def test_duplicate_version_rejected(self) -> None:
        doc = _index_doc(x=[
            {"version": "1.0.0", "digest": "a"},
            {"version": "1.0.0", "digest": "b"},
        ])
        with pytest.raises(ValidationError) as excinfo:
            parse_index(doc, "t")
        assert any("重复的版本 1.0.0" in d for d in excinfo.value.details)

    def test_entries_must_be_mapping(self) -> None:
        with pytest.raises(ValidationError, match="entries"):
            parse_index({"entries": ["x"]}, "t")

    def test_missing_version(self) -> None:
        with pytest.raises(ValidationError) as excinfo:
            parse_index(_index_doc(x=[{"digest": "a"}]), "t")
        assert excinfo.value.details == ["x: 条目缺少 version"]

    def test_unknown_chart_has_no_versions(self) -> None:
        assert parse_index(_index_doc(), "t").versions_of("nope") == []


class TestIndexCache:
    def test_get_without_cache(self, tmp_path: Path) -> None:
        cache = IndexCache(tmp_path / "cache")
        with pytest.raises(RepositoryUnknown, match="没有本地索引缓存"):
            cache.get("test")

    def test_get_reads_cache_file(self, tmp_path: Path) -> None:
        cache = IndexCache(tmp_path / "cache")
        path = cache.index_path("test")
        path.parent.mkdir(parents=True)
        path.write_text(yaml.dump(_index_doc(
            reqtest=[{"version": "0.1.0", "digest": "abc", "urls": ["r.tgz"]}],
        )), encoding="utf-8")

        index = cache.get("test")
        assert index.repository == "test"
        assert index.versions_of("reqtest")[0].digest == "abc"
        assert cache.list() == {"test"}

    def test_corrupt_cache_file(self, tmp_path: Path) -> None:
        cache = IndexCache(tmp_path / "cache")
        path = cache.index_path("test")
        path.parent.mkdir(parents=True)
        path.write_text("entries: [unclosed\n", encoding="utf-8")
        with pytest.raises(ValidationError, match="无法解析"):
            cache.get("test")

    def test_refresh_replaces_cache(self, tmp_path: Path, chart_repo: ChartRepo) -> None:
        cache = IndexCache(tmp_path / "cache", ArchiveFetcher(timeout=5))
        index = cache.refresh("test", chart_repo.url)

        assert [e.version for e in index.versions_of("compressedchart")] == ["0.3.0", "0.1.0"]
        assert cache.index_path("test").read_bytes() == (chart_repo.root / "index.yaml").read_bytes()
        assert cache.get("test") is index

        chart_repo.clear()
        chart_repo.add_chart("reqtest", "0.2.0")
        chart_repo.write_index()
        fresh = cache.refresh("test", chart_repo.url)
        assert fresh.versions_of("compressedchart") == []
        assert IndexCache(tmp_path / "cache").get("test").versions_of("reqtest")[0].version == "0.2.0"

    def test_refresh_is_idempotent(self, tmp_path: Path, chart_repo: ChartRepo) -> None:
        cache = IndexCache(tmp_path / "cache", ArchiveFetcher(timeout=5))
        cache.refresh("test", chart_repo.url)
        first = cache.index_path("test").read_bytes()
        cache.refresh("test", chart_repo.url)
        assert cache.index_path("test").read_bytes() == first

    def test_invalid_remote_index_keeps_old_cache(
        self, tmp_path: Path, chart_repo: ChartRepo,
    ) -> None:
        cache = IndexCache(tmp_path / "cache", ArchiveFetcher(timeout=5))
        cache.refresh("test", chart_repo.url)
        before = cache.index_path("test").read_bytes()

        (chart_repo.root / "index.yaml").write_text("entries: [1, 2]\n", encoding="utf-8")
        with pytest.raises(ValidationError):
            cache.refresh("test", chart_repo.url)
        assert cache.index_path("test").read_bytes() == before

    def test_refresh_unreachable(self, tmp_path: Path) -> None:
        cache = IndexCache(tmp_path / "cache", ArchiveFetcher(timeout=2))
        with pytest.raises(FetchFailed):
            cache.refresh("dead", "http://127.0.0.1:1")
        assert cache.list() == set()

    def test_remove(self, tmp_path: Path, chart_repo: ChartRepo) -> None:
        cache = IndexCache(tmp_path / "cache", ArchiveFetcher(timeout=5))
        cache.refresh("test", chart_repo.url)

        assert cache.remove("test")
        assert cache.list() == set()
        with pytest.raises(RepositoryUnknown):
            cache.get("test")
        assert not cache.remove("test")
