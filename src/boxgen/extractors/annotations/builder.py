from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import timedelta
from typing import Callable, Optional

from boxgen.domain.models import (
    HTTP_METHODS,
    AuthMode,
    CorsPolicy,
    DeploymentTarget,
    Handler,
    RateLimit,
    RatePeriod,
    Route,
)

ANNOTATION_PREFIX = "@box:"

_PERIOD_ALIASES = {
    "second": RatePeriod.SECOND, "sec": RatePeriod.SECOND, "s": RatePeriod.SECOND,
    "minute": RatePeriod.MINUTE, "min": RatePeriod.MINUTE, "m": RatePeriod.MINUTE,
    "hour": RatePeriod.HOUR, "hr": RatePeriod.HOUR, "h": RatePeriod.HOUR,
    "day": RatePeriod.DAY, "d": RatePeriod.DAY,
}

_TIMEOUT_UNITS = {
    "s": 1, "sec": 1, "second": 1,
    "m": 60, "min": 60, "minute": 60,
    "h": 3600, "hr": 3600, "hour": 3600,
}

_RATE_RE = re.compile(r"^(-?\d+)\s*/\s*([A-Za-z]+)$")
_TIMEOUT_RE = re.compile(r"^(\d+)\s*([A-Za-z]+)$")
_MEMORY_RE = re.compile(r"^(\d+)\s*(MB|GB)$", re.IGNORECASE)
_INT_RE = re.compile(r"^-?\d+$")


class AnnotationSyntaxError(ValueError):
    """A single `@box:` line whose value does not match its grammar."""


def split_annotation(text: str) -> Optional[tuple[str, str]]:
    """
    "@box:path GET /users" -> ("path", "GET /users").

    Returns None for comment text that is not an annotation.
    """
    if not text.startswith(ANNOTATION_PREFIX):
        return None
    body = text[len(ANNOTATION_PREFIX):].strip()
    if not body:
        raise AnnotationSyntaxError(f"Invalid annotation format: {text}")
    key, _, value = body.partition(" ")
    return key.strip(), value.strip()


# ----------------------------
# Value sub-parsers
# ----------------------------


def parse_service(value: str) -> Optional[str]:
    if not value:
        return None
    if not value.startswith("service="):
        raise AnnotationSyntaxError(
            f"container parameter must be in format 'service=name', got: {value}"
        )
    name = value[len("service="):].strip()
    if not name:
        raise AnnotationSyntaxError("service name cannot be empty")
    return name


def parse_route(value: str) -> Route:
    parts = value.split(None, 1)
    if len(parts) != 2:
        raise AnnotationSyntaxError(f"path must be in format 'METHOD /path', got: {value}")
    method = parts[0].upper()
    if method not in HTTP_METHODS:
        raise AnnotationSyntaxError(f"invalid HTTP method: {parts[0]}")
    return Route(method=method, path=parts[1].strip())


def parse_auth(value: str) -> AuthMode:
    try:
        return AuthMode(value.strip().lower())
    except ValueError:
        raise AnnotationSyntaxError(
            f"auth must be 'required', 'optional', or 'none', got: {value}"
        ) from None


def parse_cors(value: str) -> CorsPolicy:
    if not value.startswith("origins="):
        raise AnnotationSyntaxError(
            f"cors must be in format 'origins=*' or 'origins=url1,url2', got: {value}"
        )
    raw_origins = value[len("origins="):].strip()
    if raw_origins == "*":
        origins: tuple[str, ...] = ("*",)
    else:
        origins = tuple(o.strip() for o in raw_origins.split(",") if o.strip())
    return CorsPolicy(origins=origins, raw=value)


def parse_rate_limit(value: str) -> RateLimit:
    m = _RATE_RE.match(value)
    if not m:
        raise AnnotationSyntaxError(f"ratelimit must be in format 'count/period', got: {value}")
    period = _PERIOD_ALIASES.get(m.group(2).lower())
    if period is None:
        raise AnnotationSyntaxError(
            f"invalid period in ratelimit: {m.group(2)} (use second/minute/hour/day)"
        )
    return RateLimit(count=int(m.group(1)), period=period, raw=value)


def parse_timeout(value: str) -> timedelta:
    m = _TIMEOUT_RE.match(value)
    if not m:
        raise AnnotationSyntaxError(
            f"invalid timeout format: {value} (use format like '30s', '5m', '1h')"
        )
    multiplier = _TIMEOUT_UNITS.get(m.group(2).lower())
    if multiplier is None:
        raise AnnotationSyntaxError(f"invalid timeout unit: {m.group(2)} (use s/m/h)")
    return timedelta(seconds=int(m.group(1)) * multiplier)


def parse_memory(value: str) -> str:
    m = _MEMORY_RE.match(value)
    if not m:
        raise AnnotationSyntaxError(f"memory must be in format '<int>MB' or '<int>GB', got: {value}")
    return f"{int(m.group(1))}{m.group(2).upper()}"


def parse_concurrency(value: str) -> int:
    if not _INT_RE.match(value):
        raise AnnotationSyntaxError(f"Invalid concurrency value: {value}")
    return int(value)


# ----------------------------
# Builder
# ----------------------------


@dataclass
class HandlerBuilder:
    """
    Accumulates one declaration's annotations into typed fields.

    A Handler is only produced once the whole block has been consumed, and
    only when a deployment target was declared.
    """

    name: str
    package: str
    module: str = ""
    file_path: str = ""
    line: int = 0

    target: Optional[DeploymentTarget] = None
    service: Optional[str] = None
    route: Optional[Route] = None
    auth: AuthMode = AuthMode.NONE
    cors: Optional[CorsPolicy] = None
    rate_limit: Optional[RateLimit] = None
    timeout: Optional[timedelta] = None
    memory: Optional[str] = None
    concurrency: Optional[int] = None

    def apply(self, key: str, value: str) -> None:
        handler = _APPLIERS.get(key)
        if handler is None:
            raise AnnotationSyntaxError(f"Unknown annotation type: {key}")
        handler(self, value)

    def build(self) -> Optional[Handler]:
        if self.target is None:
            return None
        return Handler(
            name=self.name,
            package=self.package,
            module=self.module,
            file_path=self.file_path,
            line=self.line,
            target=self.target,
            service=self.service,
            route=self.route,
            auth=self.auth,
            cors=self.cors,
            rate_limit=self.rate_limit,
            timeout=self.timeout,
            memory=self.memory,
            concurrency=self.concurrency,
        )

    # appliers ---------------------------------------------------------------

    # the target is set before the value is checked so a malformed value still
    # yields a handler alongside its ParseError

    def _apply_function(self, value: str) -> None:
        self.target = DeploymentTarget.FUNCTION
        if value:
            raise AnnotationSyntaxError(f"function annotation takes no value, got: {value}")

    def _apply_container(self, value: str) -> None:
        self.target = DeploymentTarget.CONTAINER
        self.service = parse_service(value)

    def _apply_path(self, value: str) -> None:
        self.route = parse_route(value)

    def _apply_auth(self, value: str) -> None:
        self.auth = parse_auth(value)

    def _apply_cors(self, value: str) -> None:
        self.cors = parse_cors(value)

    def _apply_ratelimit(self, value: str) -> None:
        self.rate_limit = parse_rate_limit(value)

    def _apply_timeout(self, value: str) -> None:
        self.timeout = parse_timeout(value)

    def _apply_memory(self, value: str) -> None:
        self.memory = parse_memory(value)

    def _apply_concurrency(self, value: str) -> None:
        self.concurrency = parse_concurrency(value)


_APPLIERS: dict[str, Callable[[HandlerBuilder, str], None]] = {
    "function": HandlerBuilder._apply_function,
    "container": HandlerBuilder._apply_container,
    "path": HandlerBuilder._apply_path,
    "auth": HandlerBuilder._apply_auth,
    "cors": HandlerBuilder._apply_cors,
    "ratelimit": HandlerBuilder._apply_ratelimit,
    "timeout": HandlerBuilder._apply_timeout,
    "memory": HandlerBuilder._apply_memory,
    "concurrency": HandlerBuilder._apply_concurrency,
}
