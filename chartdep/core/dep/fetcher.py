"""chart 归档拉取器

职责:
- 从解析出的下载地址拉取归档到暂存路径（不直接写入 charts/）
- 拉取仓库 index.yaml 原始内容（供 IndexCache.refresh 使用）
- 超时、非 2xx 响应、截断传输统一报 FetchFailed，不做重试
- 支持通过 threading.Event 取消，取消或失败时删除半截文件
"""

from __future__ import annotations

import http.client
import logging
import threading
import urllib.error
import urllib.request
from collections.abc import Callable
from pathlib import Path

from chartdep import __version__
from chartdep.core.exceptions import FetchFailed
from chartdep.utils.net import validate_url_scheme

logger = logging.getLogger(__name__)

_CHUNK_SIZE = 64 * 1024
_USER_AGENT = f"chartdep/{__version__}"


class ArchiveFetcher:
    """基于 urllib 的只读下载器"""

    def __init__(
        self,
        timeout: float = 60.0,
        cancel_event: threading.Event | None = None,
        chunk_size: int = _CHUNK_SIZE,
    ) -> None:
        self.timeout = timeout
        self.cancel_event = cancel_event or threading.Event()
        self.chunk_size = chunk_size

    def cancel(self) -> None:
        """取消所有进行中和后续的传输"""
        self.cancel_event.set()

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()

    def fetch(self, url: str, destination: Path) -> Path:
        """下载 url 到 destination，返回 destination

        Raises:
            ValidationError: URL 协议不是 http/https
            FetchFailed: 传输失败、非成功响应、内容截断或已取消
        """
        validate_url_scheme(url, context="chart download")
        destination.parent.mkdir(parents=True, exist_ok=True)
        logger.debug("下载: %s -> %s", url, destination)
        try:
            received = self._stream_to(url, destination)
        except BaseException:
            destination.unlink(missing_ok=True)
            raise
        logger.info("已下载: %s (%d 字节)", url, received)
        return destination

    def fetch_bytes(self, url: str) -> bytes:
        """把 url 的完整内容读入内存（用于 index.yaml 这类小文档）"""
        validate_url_scheme(url, context="index download")
        chunks: list[bytes] = []
        self._transfer(url, chunks.append)
        return b"".join(chunks)

    def _stream_to(self, url: str, destination: Path) -> int:
        with open(destination, "wb") as f:
            return self._transfer(url, f.write)

    def _transfer(self, url: str, sink: Callable[[bytes], object]) -> int:
        if self.cancelled:
            raise FetchFailed(f"传输已取消: {url}")

        request = urllib.request.Request(url, headers={"User-Agent": _USER_AGENT})
        received = 0
        try:
            with urllib.request.urlopen(request, timeout=self.timeout) as resp:  # nosec B310
                status = getattr(resp, "status", 200)
                if not 200 <= status < 300:
                    raise FetchFailed(f"下载失败: {url} - HTTP {status}")
                expected = resp.headers.get("Content-Length")
                while True:
                    if self.cancelled:
                        raise FetchFailed(f"传输已取消: {url}")
                    chunk = resp.read(self.chunk_size)
                    if not chunk:
                        break
                    sink(chunk)
                    received += len(chunk)
        except urllib.error.HTTPError as e:
            raise FetchFailed(f"下载失败: {url} - HTTP {e.code} {e.reason}") from e
        except (urllib.error.URLError, http.client.HTTPException, OSError) as e:
            raise FetchFailed(f"下载失败: {url} - {e}") from e

        if expected is not None and expected.isdigit() and int(expected) != received:
            raise FetchFailed(
                f"传输不完整: {url} - 期望 {expected} 字节, 实际 {received} 字节",
            )
        return received
