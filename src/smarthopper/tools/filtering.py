"""Include/exclude filters such as ``"Components,-Scripting"`` or ``"-*"``."""

import re
from dataclasses import dataclass, field

_SPLIT = re.compile(r"[,\s]+")


@dataclass(slots=True, frozen=True)
class Filter:
    exclude_all: bool = False
    include_all: bool = True
    includes: frozenset[str] = field(default_factory=frozenset)
    excludes: frozenset[str] = field(default_factory=frozenset)

    @classmethod
    def parse(cls, raw: str | None) -> "Filter":
        """Parse a comma or space separated filter.

        Empty input and ``*`` include everything, ``-*`` anywhere excludes
        everything, ``-name`` excludes a key and ``name`` or ``+name``
        restricts the result to the listed keys. Keys compare case-insensitively.
        """
        if raw is None or not raw.strip():
            return cls()
        parts = [part for part in _SPLIT.split(raw.strip()) if part]
        if "-*" in parts:
            return cls(exclude_all=True, include_all=False)

        includes = [part.removeprefix("+") for part in parts if not part.startswith("-")]
        excludes = [part[1:] for part in parts if part.startswith("-") and part != "-*"]
        include_all = "*" in includes or not includes
        return cls(
            exclude_all=False,
            include_all=include_all,
            includes=frozenset(part.lower() for part in includes if part and part != "*"),
            excludes=frozenset(part.lower() for part in excludes if part),
        )

    def should_include(self, key: str) -> bool:
        if self.exclude_all:
            return False
        lowered = key.lower()
        if lowered in self.excludes:
            return False
        if self.include_all:
            return True
        return lowered in self.includes

    def allows_any(self, *keys: str) -> bool:
        """Match a tool by any of its keys; an exclusion of one key wins."""
        if self.exclude_all:
            return False
        lowered = {key.lower() for key in keys if key}
        if lowered & self.excludes:
            return False
        if self.include_all:
            return True
        return bool(lowered & self.includes)


def parse(raw: str | None) -> Filter:
    return Filter.parse(raw)
