"""网络工具 — URL 安全校验与仓库 URL 拼接"""

from __future__ import annotations

from urllib.parse import urljoin, urlparse

from chartdep.core.exceptions import ValidationError

_ALLOWED_SCHEMES = frozenset(("http", "https"))


def validate_url_scheme(url: str, *, context: str = "") -> None:
    """校验 URL 仅使用 http/https，防止 file:// 等非预期协议访问

    Raises:
        ValidationError: URL scheme 不在白名单内
    """
    parsed = urlparse(url)
    if parsed.scheme not in _ALLOWED_SCHEMES:
        label = f" ({context})" if context else ""
        raise ValidationError(
            f"不允许的 URL 协议 '{parsed.scheme}'{label}，"
            f"仅支持 http/https: {url}"
        )


def normalize_repo_url(url: str) -> str:
    """去掉末尾斜杠，用于比较仓库 URL"""
    return url.strip().rstrip("/")


def resolve_chart_url(repo_url: str, chart_url: str) -> str:
    """把索引里的下载地址解析为绝对 URL

    索引中的 urls 可以是绝对地址，也可以是相对于仓库根的相对路径
    （如 ``charts/reqtest-0.1.0.tgz``）。
    """
    if urlparse(chart_url).scheme:
        return chart_url
    return urljoin(normalize_repo_url(repo_url) + "/", chart_url)
