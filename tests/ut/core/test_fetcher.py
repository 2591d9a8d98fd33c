"""ArchiveFetcher 测试 — 本地 HTTP 仓库"""

from __future__ import annotations

from pathlib import Path

import pytest

from chartdep.core.dep.fetcher import ArchiveFetcher
from chartdep.core.exceptions import FetchFailed, ValidationError
from conftest import TRUNCATED_PATH, ChartRepo


class TestFetch:
    def test_download_archive(self, tmp_path: Path, chart_repo: ChartRepo) -> None:
        dest = tmp_path / "staging" / "reqtest" / "reqtest-0.1.0.tgz"
        result = ArchiveFetcher(timeout=5).fetch(f"{chart_repo.url}/charts/reqtest-0.1.0.tgz", dest)
        assert result == dest
        assert dest.read_bytes() == (chart_repo.root / "charts" / "reqtest-0.1.0.tgz").read_bytes()

    def test_small_chunks(self, tmp_path: Path, chart_repo: ChartRepo) -> None:
        dest = tmp_path / "c.tgz"
        ArchiveFetcher(timeout=5, chunk_size=7).fetch(
            f"{chart_repo.url}/charts/compressedchart-0.3.0.tgz", dest,
        )
        assert dest.read_bytes() == (
            chart_repo.root / "charts" / "compressedchart-0.3.0.tgz"
        ).read_bytes()

    def test_not_found(self, tmp_path: Path, chart_repo: ChartRepo) -> None:
        dest = tmp_path / "missing.tgz"
        with pytest.raises(FetchFailed, match="HTTP 404"):
            ArchiveFetcher(timeout=5).fetch(f"{chart_repo.url}/charts/missing-1.0.0.tgz", dest)
        assert not dest.exists()

    def test_truncated_transfer(self, tmp_path: Path, chart_repo: ChartRepo) -> None:
        dest = tmp_path / "t.tgz"
        with pytest.raises(FetchFailed):
            ArchiveFetcher(timeout=5).fetch(f"{chart_repo.url}{TRUNCATED_PATH}", dest)
        assert not dest.exists()

    def test_connection_refused(self, tmp_path: Path) -> None:
        with pytest.raises(FetchFailed, match="下载失败"):
            ArchiveFetcher(timeout=2).fetch("http://127.0.0.1:1/x.tgz", tmp_path / "x.tgz")

    def test_non_http_scheme(self, tmp_path: Path) -> None:
        with pytest.raises(ValidationError, match="不允许的 URL 协议"):
            ArchiveFetcher().fetch("file:///etc/passwd", tmp_path / "x.tgz")

    def test_cancelled(self, tmp_path: Path, chart_repo: ChartRepo) -> None:
        fetcher = ArchiveFetcher(timeout=5)
        fetcher.cancel()
        dest = tmp_path / "r.tgz"
        with pytest.raises(FetchFailed, match="已取消"):
            fetcher.fetch(f"{chart_repo.url}/charts/reqtest-0.1.0.tgz", dest)
        assert fetcher.cancelled
        assert not dest.exists()
        assert chart_repo.requests == []


class TestFetchBytes:
    def test_index(self, chart_repo: ChartRepo) -> None:
        data = ArchiveFetcher(timeout=5).fetch_bytes(f"{chart_repo.url}/index.yaml")
        assert data == (chart_repo.root / "index.yaml").read_bytes()
        assert chart_repo.requests == ["/index.yaml"]

    def test_not_found(self, chart_repo: ChartRepo) -> None:
        with pytest.raises(FetchFailed, match="404"):
            ArchiveFetcher(timeout=5).fetch_bytes(f"{chart_repo.url}/nope/index.yaml")
