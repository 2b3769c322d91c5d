from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from enum import Enum
from typing import Iterable, Optional


class DeploymentTarget(str, Enum):
    FUNCTION = "function"    # Cloud Functions (gen2)
    CONTAINER = "container"  # Cloud Run


class AuthMode(str, Enum):
    NONE = "none"
    OPTIONAL = "optional"
    REQUIRED = "required"


class RatePeriod(str, Enum):
    SECOND = "second"
    MINUTE = "minute"
    HOUR = "hour"
    DAY = "day"

    @property
    def seconds(self) -> int:
        return _PERIOD_SECONDS[self]


_PERIOD_SECONDS = {
    RatePeriod.SECOND: 1,
    RatePeriod.MINUTE: 60,
    RatePeriod.HOUR: 3600,
    RatePeriod.DAY: 86400,
}


class Severity(str, Enum):
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


HTTP_METHODS = ("GET", "POST", "PUT", "DELETE", "PATCH", "OPTIONS", "HEAD")


@dataclass(frozen=True)
class Route:
    method: str  # GET, POST, ...
    path: str    # /api/v1/accounts/{id}

    def __str__(self) -> str:
        return f"{self.method} {self.path}"

    @property
    def path_params(self) -> list[str]:
        """Names of `{param}` segments, in path order."""
        out: list[str] = []
        for seg in self.path.split("/"):
            if seg.startswith("{") and seg.endswith("}") and len(seg) > 2:
                out.append(seg[1:-1])
        return out


@dataclass(frozen=True)
class RateLimit:
    count: int
    period: RatePeriod
    raw: str = ""  # e.g. "100/hour"

    @property
    def window(self) -> timedelta:
        return timedelta(seconds=self.period.seconds)


@dataclass(frozen=True)
class CorsPolicy:
    origins: tuple[str, ...]
    raw: str = ""  # e.g. "origins=*"


@dataclass(frozen=True)
class Handler:
    """
    One annotated handler function discovered in a source tree.

    Created once by the parser and read-only afterwards; every emitter reads
    the same instances.
    """

    name: str                # symbol name, e.g. create_account
    package: str             # enclosing module/package name, e.g. accounts
    module: str = ""         # dotted import path, e.g. handlers.accounts
    file_path: str = ""
    line: int = 0

    target: Optional[DeploymentTarget] = None
    service: Optional[str] = None  # explicit container group override

    route: Optional[Route] = None
    auth: AuthMode = AuthMode.NONE
    cors: Optional[CorsPolicy] = None
    rate_limit: Optional[RateLimit] = None
    timeout: Optional[timedelta] = None

    memory: Optional[str] = None      # functions only, e.g. "256MB"
    concurrency: Optional[int] = None  # containers only, 1..1000

    @property
    def group_name(self) -> str:
        return self.service or self.package or "default"

    @property
    def timeout_seconds(self) -> Optional[int]:
        if self.timeout is None:
            return None
        return int(self.timeout.total_seconds())


@dataclass(frozen=True)
class ParseError:
    """Non-fatal problem found while scanning a file."""

    file_path: str
    line: int
    message: str
    annotation: str = ""

    def __str__(self) -> str:
        return f"{self.file_path}:{self.line}: {self.message}"


@dataclass(frozen=True)
class ValidationError:
    """Handler-scoped diagnostic produced by the validator."""

    handler: str
    annotation: str
    reason: str
    severity: Severity = Severity.ERROR

    @property
    def blocking(self) -> bool:
        return self.severity is Severity.ERROR

    def __str__(self) -> str:
        return f"{self.handler} [{self.annotation}] {self.severity.value}: {self.reason}"


@dataclass(frozen=True)
class ParseResult:
    handlers: tuple[Handler, ...] = ()
    errors: tuple[ParseError, ...] = ()

    def merged(self, other: ParseResult) -> ParseResult:
        return ParseResult(
            handlers=self.handlers + other.handlers,
            errors=self.errors + other.errors,
        )


@dataclass(frozen=True)
class ServiceGroup:
    name: str
    handlers: tuple[Handler, ...]


def filter_target(handlers: Iterable[Handler], target: DeploymentTarget) -> list[Handler]:
    return [h for h in handlers if h.target is target]


def group_services(handlers: Iterable[Handler]) -> list[ServiceGroup]:
    """
    Group container handlers by service name (or package name if unset).

    Groups are sorted by name; handlers keep declaration order inside a group.
    Non-container handlers are ignored.
    """
    by_name: dict[str, list[Handler]] = {}
    for h in filter_target(handlers, DeploymentTarget.CONTAINER):
        by_name.setdefault(h.group_name, []).append(h)

    return [ServiceGroup(name=name, handlers=tuple(by_name[name])) for name in sorted(by_name)]
