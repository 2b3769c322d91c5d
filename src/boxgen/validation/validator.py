from __future__ import annotations

from typing import Iterable

from boxgen.domain.models import (
    DeploymentTarget,
    Handler,
    Severity,
    ValidationError,
)
from boxgen.domain.naming import to_kebab_case

FUNCTION_MEMORY_SIZES = ("128MB", "256MB", "512MB", "1GB", "2GB", "4GB", "8GB", "16GB")

FUNCTION_MAX_TIMEOUT_SECONDS = 540   # Cloud Functions: 9 minutes
CONTAINER_MAX_TIMEOUT_SECONDS = 3600  # Cloud Run: 1 hour
SHORT_TIMEOUT_SECONDS = 5

MIN_CONCURRENCY = 1
MAX_CONCURRENCY = 1000

HIGH_RATE_LIMIT = 10_000
LOW_RATE_LIMIT = 10


def validate_all(handlers: Iterable[Handler]) -> list[ValidationError]:
    handlers = list(handlers)
    return (
        validate_handlers(handlers)
        + validate_unique_routes(handlers)
        + validate_unique_names(handlers)
    )


def validate_handlers(handlers: Iterable[Handler]) -> list[ValidationError]:
    """Per-handler checks. Every problem is reported; nothing short-circuits."""
    errors: list[ValidationError] = []
    for h in handlers:
        errors.extend(_validate_handler(h))
    return errors


def validate_unique_routes(handlers: Iterable[Handler]) -> list[ValidationError]:
    """
    (method, path) must be unique across the whole set.

    The first declared handler keeps the route; each later one gets a
    diagnostic naming the handler it collides with.
    """
    errors: list[ValidationError] = []
    seen: dict[tuple[str, str], str] = {}

    for h in handlers:
        if h.route is None:
            continue
        key = (h.route.method, h.route.path)
        existing = seen.get(key)
        if existing is None:
            seen[key] = h.name
            continue
        errors.append(
            _error(h, "path", f"Duplicate route: {h.route} already defined in handler {existing}")
        )
    return errors


def validate_unique_names(handlers: Iterable[Handler]) -> list[ValidationError]:
    """
    Generated artifact names must not collide across packages.

    Function handlers are deployed under their kebab-case name, and every
    rate-limited handler defines a gateway quota metric named after itself.
    As with routes, the later handler is the one reported.
    """
    errors: list[ValidationError] = []
    functions: dict[str, Handler] = {}
    metrics: dict[str, Handler] = {}

    for h in handlers:
        if h.route is None:
            continue

        if h.target is DeploymentTarget.FUNCTION:
            name = to_kebab_case(h.name)
            existing = functions.setdefault(name, h)
            if existing is not h:
                errors.append(
                    _error(
                        h,
                        "function",
                        f"Function name {name} already used by handler {existing.name} "
                        f"in package {existing.package}",
                    )
                )

        if h.rate_limit is not None:
            existing = metrics.setdefault(h.name, h)
            if existing is not h:
                errors.append(
                    _error(
                        h,
                        "ratelimit",
                        f"Quota metric {h.name}-quota already defined by handler {existing.name} "
                        f"in package {existing.package}",
                    )
                )

    return errors


def _error(h: Handler, annotation: str, reason: str, severity: Severity = Severity.ERROR) -> ValidationError:
    return ValidationError(
        handler=h.name,
        annotation=f"@box:{annotation}",
        reason=reason,
        severity=severity,
    )


def _validate_handler(h: Handler) -> list[ValidationError]:
    errors: list[ValidationError] = []

    if h.target is None:
        errors.append(
            ValidationError(
                handler=h.name,
                annotation="@box:function or @box:container",
                reason="Missing deployment type annotation. Add @box:function or @box:container",
            )
        )

    if h.route is None:
        errors.append(_error(h, "path", "Missing path annotation. Add @box:path METHOD /path"))
    else:
        errors.extend(_validate_path(h))

    if h.target is DeploymentTarget.FUNCTION:
        errors.extend(_validate_function_config(h))
    elif h.target is DeploymentTarget.CONTAINER:
        errors.extend(_validate_container_config(h))

    if h.rate_limit is not None:
        errors.extend(_validate_rate_limit(h))

    if h.cors is not None:
        errors.extend(_validate_cors(h))

    if h.timeout is not None:
        errors.extend(_validate_timeout(h))

    return errors


def _validate_path(h: Handler) -> list[ValidationError]:
    errors: list[ValidationError] = []
    path = h.route.path

    if not path.startswith("/"):
        errors.append(_error(h, "path", f"Path must start with '/': {path}"))

    if len(path) > 1 and path.endswith("/"):
        errors.append(_error(h, "path", f"Path should not end with '/': {path}"))

    if ("{" in path or "}" in path) and not has_valid_path_params(path):
        errors.append(
            _error(h, "path", f"Invalid path parameter syntax: {path} (use {{paramName}})")
        )

    return errors


def has_valid_path_params(path: str) -> bool:
    if path.count("{") != path.count("}"):
        return False

    for seg in path.split("/"):
        if "{" not in seg and "}" not in seg:
            continue
        if not (seg.startswith("{") and seg.endswith("}")):
            return False
        name = seg[1:-1]
        if not name or "{" in name or "}" in name:
            return False
    return True


def _validate_function_config(h: Handler) -> list[ValidationError]:
    errors: list[ValidationError] = []

    if h.memory is not None and h.memory not in FUNCTION_MEMORY_SIZES:
        errors.append(
            _error(
                h,
                "memory",
                f"Invalid memory value: {h.memory} (valid: {', '.join(FUNCTION_MEMORY_SIZES)})",
            )
        )

    if h.concurrency is not None:
        errors.append(
            _error(
                h,
                "concurrency",
                "Concurrency is not applicable to Cloud Functions, only Cloud Run containers",
            )
        )

    return errors


def _validate_container_config(h: Handler) -> list[ValidationError]:
    errors: list[ValidationError] = []

    if h.concurrency is not None and not (MIN_CONCURRENCY <= h.concurrency <= MAX_CONCURRENCY):
        errors.append(
            _error(
                h,
                "concurrency",
                f"Concurrency must be between {MIN_CONCURRENCY} and {MAX_CONCURRENCY}, "
                f"got: {h.concurrency}",
            )
        )

    if h.memory is not None:
        errors.append(
            _error(
                h,
                "memory",
                "Note: Memory for Cloud Run containers is configured at the service level, "
                "not per handler",
                Severity.INFO,
            )
        )

    return errors


def _validate_rate_limit(h: Handler) -> list[ValidationError]:
    errors: list[ValidationError] = []
    rl = h.rate_limit

    if rl.count <= 0:
        errors.append(_error(h, "ratelimit", f"Rate limit count must be positive, got: {rl.count}"))

    if rl.count > HIGH_RATE_LIMIT:
        errors.append(
            _error(
                h,
                "ratelimit",
                f"Rate limit seems very high: {rl.raw} (consider if this is intentional)",
                Severity.WARNING,
            )
        )

    if 0 < rl.count < LOW_RATE_LIMIT and rl.period.seconds >= 3600:
        errors.append(
            _error(
                h,
                "ratelimit",
                f"Rate limit seems very low: {rl.raw} (consider if this is intentional)",
                Severity.WARNING,
            )
        )

    return errors


def _validate_cors(h: Handler) -> list[ValidationError]:
    if not h.cors.origins:
        return [_error(h, "cors", "CORS must specify at least one origin")]

    errors: list[ValidationError] = []
    for origin in h.cors.origins:
        if origin == "*":
            continue
        if not origin.startswith(("http://", "https://")):
            errors.append(
                _error(h, "cors", f"CORS origin must start with http:// or https://, got: {origin}")
            )
    return errors


def _validate_timeout(h: Handler) -> list[ValidationError]:
    errors: list[ValidationError] = []
    seconds = h.timeout.total_seconds()

    if h.target is DeploymentTarget.FUNCTION and seconds > FUNCTION_MAX_TIMEOUT_SECONDS:
        errors.append(
            _error(
                h,
                "timeout",
                f"Cloud Function timeout cannot exceed {FUNCTION_MAX_TIMEOUT_SECONDS}s "
                f"(9 minutes), got: {int(seconds)}s",
            )
        )
    elif h.target is DeploymentTarget.CONTAINER and seconds > CONTAINER_MAX_TIMEOUT_SECONDS:
        errors.append(
            _error(
                h,
                "timeout",
                f"Cloud Run timeout cannot exceed {CONTAINER_MAX_TIMEOUT_SECONDS}s "
                f"(1 hour), got: {int(seconds)}s",
            )
        )

    if seconds < SHORT_TIMEOUT_SECONDS:
        errors.append(
            _error(
                h,
                "timeout",
                f"Timeout is very short: {int(seconds)}s (consider if this is intentional)",
                Severity.WARNING,
            )
        )

    return errors
