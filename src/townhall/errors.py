"""Townhall error hierarchy."""

from __future__ import annotations

from enum import StrEnum
from typing import Any


class ErrorCategory(StrEnum):
    """Category of error for classification and handling."""

    WORKSPACE = "workspace"
    CONFIGURATION = "configuration"
    ROUTING = "routing"
    SESSION = "session"
    DAEMON = "daemon"
    STORE = "store"
    ORCHESTRATION = "orchestration"


class TownhallError(Exception):
    """Base error for all townhall exceptions."""

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory = ErrorCategory.ORCHESTRATION,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.category = category
        self.details: dict[str, Any] = details or {}

    def __repr__(self) -> str:
        return f"{type(self).__name__}({str(self)!r}, category={self.category!r})"


class TownNotFoundError(TownhallError):
    """No town root could be located."""

    def __init__(self, start: str) -> None:
        super().__init__(
            f"not in a town workspace (searched upward from {start})",
            category=ErrorCategory.WORKSPACE,
            details={"start": start},
        )


class ConfigurationError(TownhallError):
    """Invalid or missing configuration."""

    def __init__(self, message: str) -> None:
        super().__init__(message, category=ErrorCategory.CONFIGURATION)


class RouteNotFoundError(TownhallError):
    """No route prefix matches the identifier."""

    def __init__(self, identifier: str) -> None:
        super().__init__(
            f"no route matches identifier {identifier!r}",
            category=ErrorCategory.ROUTING,
            details={"identifier": identifier},
        )
        self.identifier = identifier


class AmbiguousRouteError(TownhallError):
    """Two route records share a prefix but point at different paths."""

    def __init__(self, prefix: str, paths: list[str]) -> None:
        super().__init__(
            f"route prefix {prefix!r} is ambiguous: {', '.join(paths)}",
            category=ErrorCategory.ROUTING,
            details={"prefix": prefix, "paths": paths},
        )
        self.prefix = prefix
        self.paths = paths


class RouteWriteError(TownhallError):
    """The routes log could not be written."""

    def __init__(self, message: str) -> None:
        super().__init__(message, category=ErrorCategory.ROUTING)


class ServiceError(TownhallError):
    """A service unit failed to stop or start."""

    def __init__(
        self,
        message: str,
        *,
        unit: str | None = None,
        category: ErrorCategory = ErrorCategory.ORCHESTRATION,
        **kwargs: Any,
    ) -> None:
        super().__init__(message, category=category, **kwargs)
        self.unit = unit


class MultiplexerUnavailableError(ServiceError):
    """The session multiplexer binary is missing or not responding."""

    def __init__(self, binary: str) -> None:
        super().__init__(f"{binary} not available", category=ErrorCategory.SESSION)


class SessionError(ServiceError):
    """A multiplexer session operation failed."""

    def __init__(self, message: str, *, unit: str | None = None) -> None:
        super().__init__(message, unit=unit, category=ErrorCategory.SESSION)


class DaemonError(ServiceError):
    """The control daemon could not be stopped or started."""

    def __init__(self, message: str, *, unit: str | None = None) -> None:
        super().__init__(message, unit=unit, category=ErrorCategory.DAEMON)


class StoreCommandError(ServiceError):
    """The store binary exited with an error."""

    def __init__(
        self,
        args: list[str],
        returncode: int | None,
        output: str = "",
    ) -> None:
        detail = output.strip() or f"exit status {returncode}"
        super().__init__(
            f"{' '.join(args[:3])}: {detail}",
            category=ErrorCategory.STORE,
            details={"args": args, "returncode": returncode},
        )
        self.returncode = returncode
        self.output = output


class ReloadFailedError(TownhallError):
    """At least one reload phase recorded a failure."""

    def __init__(self, failures: int = 0) -> None:
        super().__init__(
            "not all services reloaded",
            category=ErrorCategory.ORCHESTRATION,
            details={"failures": failures},
        )
