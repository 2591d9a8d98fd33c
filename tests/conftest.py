"""测试共享 fixture — 本地 chart 仓库 HTTP 服务 + chart 目录

  ChartRepo (tmp 目录 + ThreadingHTTPServer)
    ├── index.yaml                 write_index() 生成，digest 为真实 sha256
    ├── charts/reqtest-0.1.0.tgz
    ├── charts/compressedchart-0.1.0.tgz
    └── charts/compressedchart-0.3.0.tgz

  home/repository/repositories.yml   "test" -> 仓库 URL
  depup/requirements.yaml            reqtest 0.1.0 + compressedchart 0.1.0
"""

from __future__ import annotations

import hashlib
import io
import tarfile
import threading
from collections.abc import Iterator
from dataclasses import dataclass, field
from functools import partial
from http.server import SimpleHTTPRequestHandler, ThreadingHTTPServer
from pathlib import Path

import pytest
import yaml

from chartdep.core.config import Config
from chartdep.core.registry import RepoRegistry

TRUNCATED_PATH = "/__truncated__.tgz"


class _RepoHandler(SimpleHTTPRequestHandler):
    """记录请求路径；TRUNCATED_PATH 返回声明长度不足的响应"""

    def log_message(self, format: str, *args: object) -> None:  # noqa: A002
        pass

    def do_GET(self) -> None:  # noqa: N802
        self.server.requests.append(self.path)  # type: ignore[attr-defined]
        if self.path == TRUNCATED_PATH:
            self.send_response(200)
            self.send_header("Content-Type", "application/gzip")
            self.send_header("Content-Length", "1000")
            self.end_headers()
            self.wfile.write(b"x" * 10)
            return
        super().do_GET()


def make_chart_archive(name: str, version: str, description: str = "") -> bytes:
    """生成一个最小 chart 归档（tar.gz，只含 Chart.yaml）"""
    chart_yaml = yaml.dump({
        "name": name, "version": version,
        "description": description or f"{name} test chart",
    }).encode("utf-8")
    buf = io.BytesIO()
    with tarfile.open(fileobj=buf, mode="w:gz") as tar:
        info = tarfile.TarInfo(f"{name}/Chart.yaml")
        info.size = len(chart_yaml)
        info.mtime = 0
        tar.addfile(info, io.BytesIO(chart_yaml))
    return buf.getvalue()


@dataclass
class ChartRepo:
    """本地 chart 仓库"""

    root: Path
    url: str = ""
    server: ThreadingHTTPServer | None = None
    digests: dict[tuple[str, str], str] = field(default_factory=dict)
    _index: dict[str, list[dict]] = field(default_factory=dict)

    def add_chart(
        self, name: str, version: str, *,
        digest: str | None = None, urls: list[str] | None = None,
        payload: bytes | None = None,
    ) -> Path:
        data = payload if payload is not None else make_chart_archive(name, version)
        path = self.root / "charts" / f"{name}-{version}.tgz"
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
        real = hashlib.sha256(data).hexdigest()
        self.digests[(name, version)] = real
        self._index.setdefault(name, []).append({
            "name": name,
            "version": version,
            "digest": digest if digest is not None else real,
            "urls": urls if urls is not None else [f"charts/{name}-{version}.tgz"],
        })
        return path

    def clear(self) -> None:
        """清空索引条目（归档文件保留）"""
        self._index.clear()

    def write_index(self) -> Path:
        path = self.root / "index.yaml"
        path.write_text(yaml.dump({
            "apiVersion": "v1",
            "generated": "2016-10-06T16:23:20.499029981-06:00",
            "entries": self._index,
        }), encoding="utf-8")
        return path

    @property
    def requests(self) -> list[str]:
        assert self.server is not None
        return self.server.requests  # type: ignore[attr-defined,no-any-return]


@pytest.fixture
def chart_repo(tmp_path: Path) -> Iterator[ChartRepo]:
    """带 reqtest / compressedchart 的本地仓库，随测试启动和关闭"""
    root = tmp_path / "repo"
    root.mkdir()
    repo = ChartRepo(root=root)
    repo.add_chart("reqtest", "0.1.0")
    repo.add_chart("compressedchart", "0.1.0")
    repo.add_chart("compressedchart", "0.3.0")
    repo.write_index()

    handler = partial(_RepoHandler, directory=str(root))
    server = ThreadingHTTPServer(("127.0.0.1", 0), handler)
    server.requests = []  # type: ignore[attr-defined]
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    repo.server = server
    repo.url = f"http://127.0.0.1:{server.server_address[1]}"
    try:
        yield repo
    finally:
        server.shutdown()
        server.server_close()


@pytest.fixture
def config(tmp_path: Path) -> Config:
    return Config(home=str(tmp_path / "home"), fetch_timeout=5)


@pytest.fixture
def registered(config: Config, chart_repo: ChartRepo) -> RepoRegistry:
    """把本地仓库注册为 "test" """
    registry = RepoRegistry(config.repositories_file)
    registry.add("test", chart_repo.url)
    return registry


def write_requirements(bundle: Path, deps: list[dict[str, str]]) -> None:
    (bundle / "requirements.yaml").write_text(
        yaml.dump({"dependencies": deps}), encoding="utf-8",
    )


@pytest.fixture
def bundle(tmp_path: Path, chart_repo: ChartRepo) -> Path:
    """依赖 reqtest-0.1.0 与 compressedchart-0.1.0 的 chart"""
    path = tmp_path / "depup"
    path.mkdir()
    (path / "Chart.yaml").write_text("name: depup\nversion: 1.2.3\n", encoding="utf-8")
    write_requirements(path, [
        {"name": "reqtest", "version": "0.1.0", "repository": chart_repo.url},
        {"name": "compressedchart", "version": "0.1.0", "repository": chart_repo.url},
    ])
    return path
