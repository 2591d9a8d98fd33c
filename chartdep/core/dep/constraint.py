"""版本约束

依赖声明中的 version 字段在运行期解释为一个封闭的约束变体集合:

- ExactConstraint: 字面版本号（``0.1.0`` / ``=0.1.0`` / ``v0.1.0``），只匹配相等版本
- RangeConstraint: 范围表达式，``||`` 分隔的多组 AND 子句

两种变体都只暴露 ``satisfies(version) -> bool``，匹配逻辑集中在这里。

范围语法 -> PEP 440 specifier 的换算:

    ^1.2.3        >=1.2.3,<2.0.0
    ^0.2.3        >=0.2.3,<0.3.0
    ~1.2.3        >=1.2.3,<1.3.0
    1.2.x / 1.2   >=1.2.0,<1.3.0
    1.2 - 1.4.5   >=1.2.0,<=1.4.5
    >1.2          >=1.3.0
    <=1.2         <1.3.0
    *             (不限)

预发布版本只有在同一组子句里写了预发布版本时才会被接受。这个判断在
RangeConstraint 里显式完成，不依赖 SpecifierSet 的默认行为（不同 packaging
版本的默认值不一致）。
"""

from __future__ import annotations

import re
from abc import ABC, abstractmethod

from packaging.specifiers import InvalidSpecifier, SpecifierSet
from packaging.version import InvalidVersion, Version

from chartdep.core.exceptions import ValidationError

_FULL_VERSION_RE = re.compile(r"^v?\d+\.\d+\.\d+(?:[-+][0-9A-Za-z.\-+]+)?$")
_PARTIAL_RE = re.compile(
    r"^v?(?P<major>\d+|[xX*])"
    r"(?:\.(?P<minor>\d+|[xX*]))?"
    r"(?:\.(?P<patch>\d+|[xX*]))?$"
)
_CLAUSE_RE = re.compile(r"^(?P<op>>=|<=|!=|==|~>|>|<|=|\^|~)?(?P<ver>.+)$")
_HYPHEN_RE = re.compile(r"^\s*(?P<lo>\S+)\s+-\s+(?P<hi>\S+)\s*$")
_OP_SPACE_RE = re.compile(r"(>=|<=|!=|==|~>|>|<|=|\^|~)\s+")
_WILDCARDS = frozenset(("x", "X", "*"))


def parse_version(text: str) -> Version | None:
    """解析版本号（容忍前缀 v），非法时返回 None"""
    try:
        return Version(text.strip().lstrip("vV"))
    except InvalidVersion:
        return None


class Constraint(ABC):
    """版本约束"""

    def __init__(self, raw: str) -> None:
        self.raw = raw

    @abstractmethod
    def satisfies(self, version: Version) -> bool:
        """版本是否满足约束"""

    @property
    def is_exact(self) -> bool:
        return False

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.raw!r})"


class ExactConstraint(Constraint):
    """字面版本号约束"""

    def __init__(self, raw: str, version: Version) -> None:
        super().__init__(raw)
        self.version = version

    def satisfies(self, version: Version) -> bool:
        return version == self.version

    @property
    def is_exact(self) -> bool:
        return True


class RangeConstraint(Constraint):
    """范围约束：任一组 SpecifierSet 满足即可"""

    def __init__(self, raw: str, groups: list[SpecifierSet]) -> None:
        super().__init__(raw)
        self.groups = groups
        self.prereleases = [_names_prerelease(group) for group in groups]

    def satisfies(self, version: Version) -> bool:
        for group, allow_pre in zip(self.groups, self.prereleases):
            if version.is_prerelease and not allow_pre:
                continue
            if group.contains(version, prereleases=True):
                return True
        return False


def _names_prerelease(group: SpecifierSet) -> bool:
    """组内是否有子句写了预发布版本（``.*`` 通配子句不算）"""
    for spec in group:
        v = parse_version(spec.version)
        if v is not None and v.is_prerelease:
            return True
    return False


def parse_constraint(text: str | None) -> Constraint:
    """把约束字符串解析为 ExactConstraint / RangeConstraint

    Raises:
        ValidationError: 约束无法解析
    """
    raw = (text or "").strip()
    if not raw:
        return RangeConstraint("*", [SpecifierSet()])

    literal = raw.lstrip("=").strip()
    if "||" not in raw and _FULL_VERSION_RE.match(literal):
        version = parse_version(literal)
        if version is None:
            raise ValidationError(f"无法解析版本约束: {raw!r}")
        return ExactConstraint(raw, version)

    groups: list[SpecifierSet] = []
    for group in raw.split("||"):
        specs = _group_to_specifiers(group, raw)
        try:
            groups.append(SpecifierSet(",".join(specs)))
        except InvalidSpecifier as e:
            raise ValidationError(f"无法解析版本约束: {raw!r}: {e}") from e
    return RangeConstraint(raw, groups)


def _group_to_specifiers(group: str, raw: str) -> list[str]:
    group = group.strip()
    if not group:
        raise ValidationError(f"版本约束中存在空的 '||' 分支: {raw!r}")

    hyphen = _HYPHEN_RE.match(group)
    if hyphen:
        return (
            _clause_to_specifiers(">=", hyphen.group("lo"), raw)
            + _clause_to_specifiers("<=", hyphen.group("hi"), raw)
        )

    specs: list[str] = []
    for clause in re.split(r"[,\s]+", _OP_SPACE_RE.sub(r"\1", group)):
        if not clause:
            continue
        m = _CLAUSE_RE.match(clause)
        if m is None:
            raise ValidationError(f"无法解析版本约束子句: {clause!r} (in {raw!r})")
        specs.extend(_clause_to_specifiers(m.group("op") or "=", m.group("ver"), raw))
    return specs


def _clause_to_specifiers(op: str, ver: str, raw: str) -> list[str]:
    if _FULL_VERSION_RE.match(ver):
        exact = parse_version(ver)
        if exact is None:
            raise ValidationError(f"无法解析版本: {ver!r} (in {raw!r})")
        return _full_clause(op, exact)

    m = _PARTIAL_RE.match(ver)
    if m is None:
        raise ValidationError(f"无法解析版本: {ver!r} (in {raw!r})")
    parts: list[int] = []
    for key in ("major", "minor", "patch"):
        value = m.group(key)
        if value is None or value in _WILDCARDS:
            break
        parts.append(int(value))
    return _partial_clause(op, parts)


def _full_clause(op: str, v: Version) -> list[str]:
    major, minor, patch = (list(v.release) + [0, 0, 0])[:3]
    if op in ("=", "=="):
        return [f"=={v}"]
    if op in ("~", "~>"):
        return [f">={v}", f"<{major}.{minor + 1}.0"]
    if op == "^":
        if major > 0:
            upper = f"{major + 1}.0.0"
        elif minor > 0:
            upper = f"0.{minor + 1}.0"
        else:
            upper = f"0.0.{patch + 1}"
        return [f">={v}", f"<{upper}"]
    return [f"{op}{v}"]


def _partial_clause(op: str, parts: list[int]) -> list[str]:
    """处理 1 / 1.2 / 1.x / * 这类不完整版本"""
    if not parts:
        # "*" / "x": 只有 < 和 != 会让范围变空或无意义
        if op in ("<", "!="):
            return ["<0.0.0"]
        return []

    lower = ".".join(str(p) for p in parts + [0] * (3 - len(parts)))
    bumped = parts[:-1] + [parts[-1] + 1]
    upper = ".".join(str(p) for p in bumped + [0] * (3 - len(bumped)))

    if op in ("=", "==", "~", "~>"):
        return [f">={lower}", f"<{upper}"]
    if op == "^":
        if parts[0] > 0 or len(parts) == 1:
            return [f">={lower}", f"<{parts[0] + 1}.0.0"]
        return [f">={lower}", f"<0.{parts[1] + 1}.0"]
    if op == "!=":
        return [f"!={'.'.join(str(p) for p in parts)}.*"]
    if op == ">":
        return [f">={upper}"]
    if op == ">=":
        return [f">={lower}"]
    if op == "<":
        return [f"<{lower}"]
    # "<="
    return [f"<{upper}"]
