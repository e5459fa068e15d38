import os
import sys
from enum import IntEnum
from typing import TYPE_CHECKING, NoReturn

if TYPE_CHECKING:
    from flaketrack.models import Project


class LogLevel(IntEnum):
    DEBUG = 0
    INFO = 1
    WARN = 2
    ERROR = 3

    @classmethod
    def from_env(cls) -> "LogLevel":
        return cls[os.getenv("FLAKETRACK_LOG_LEVEL", "INFO").upper()]


log_level = LogLevel.from_env()


def debug(*args) -> None:
    if log_level <= LogLevel.DEBUG:
        print(*args, file=sys.stderr)


def info(*args) -> None:
    if log_level <= LogLevel.INFO:
        print(*args, file=sys.stderr)


def warn(*args) -> None:
    if log_level <= LogLevel.WARN:
        print(*args, file=sys.stderr)


def error(*args) -> None:
    print(*args, file=sys.stderr)


def fatal(*args) -> NoReturn:
    error(*args)
    sys.exit(1)


def project_context(project: "Project") -> str:
    """Identify a project in log lines by name and id."""
    return f"project {project.name} ({project.id})"


def project_error(project: "Project", message: str, err: BaseException) -> None:
    error(f"{message} for {project_context(project)}: {type(err).__name__}: {err}")
