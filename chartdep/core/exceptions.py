"""统一异常体系

所有业务异常继承 ChartDepError，CLI 层据此输出友好提示。

依赖更新流程中的异常额外携带 dependency / stage，
用于指明是哪个依赖在哪个阶段失败。
"""

from __future__ import annotations


class ChartDepError(Exception):
    """框架基础异常"""

    code: str = "UNKNOWN"

    def __init__(self, message: str) -> None:
        super().__init__(message)


class ConfigError(ChartDepError):
    """配置文件缺失或内容无效"""

    code = "CONFIG_ERROR"


class ValidationError(ChartDepError):
    """输入数据校验失败"""

    code = "VALIDATION_ERROR"

    def __init__(self, message: str, details: list[str] | None = None) -> None:
        super().__init__(message)
        self.details = details or []


class DependencyError(ChartDepError):
    """依赖更新失败的基类"""

    code = "DEPENDENCY_ERROR"

    def __init__(
        self, message: str, *, dependency: str = "", stage: str = "",
    ) -> None:
        super().__init__(message)
        self.dependency = dependency
        self.stage = stage

    def __str__(self) -> str:
        msg = super().__str__()
        if self.dependency and self.stage:
            return f"[{self.stage}] {self.dependency}: {msg}"
        if self.dependency:
            return f"{self.dependency}: {msg}"
        return msg


class RepositoryUnknown(DependencyError):
    """仓库未注册或本地没有缓存的索引"""

    code = "REPOSITORY_UNKNOWN"


class NoMatchingVersion(DependencyError):
    """索引中没有满足约束的版本"""

    code = "NO_MATCHING_VERSION"


class FetchFailed(DependencyError):
    """传输失败、非成功响应或内容被截断"""

    code = "FETCH_FAILED"


class DigestMismatch(DependencyError):
    """归档摘要与索引记录不一致"""

    code = "DIGEST_MISMATCH"

    def __init__(
        self, message: str, *, expected: str = "", actual: str = "",
        dependency: str = "", stage: str = "",
    ) -> None:
        super().__init__(message, dependency=dependency, stage=stage)
        self.expected = expected
        self.actual = actual


class ReconcileFailed(DependencyError):
    """替换依赖目录时发生文件系统错误"""

    code = "RECONCILE_FAILED"
