from __future__ import annotations

import os
import sys
import traceback
from typing import TYPE_CHECKING, Callable

if TYPE_CHECKING:
    from pathlib import Path


class Error(Exception):
    """Generic dissect.virtualbox error"""

    def __init__(self, message=None, cause=None, extra=None):
        if extra:
            exceptions = "\n\n".join(["".join(traceback.format_exception_only(type(e), e)) for e in extra])
            message = f"{message}\n\nAdditionally, the following exceptions occurred:\n\n{exceptions}"

        super().__init__(message)
        self.__cause__ = cause
        self.__extra__ = extra


# Only raised when an internal invariant is broken, callers are not expected to recover
class FatalError(Error):
    """An error occurred that cannot be resolved."""

    def emit_last_message(self, emitter: Callable) -> None:
        emitter(str(self))
        os.dup2(os.open(os.devnull, os.O_RDWR), sys.stdout.fileno())
        os.dup2(os.open(os.devnull, os.O_RDWR), sys.stderr.fileno())


class MalformedIdentifierError(Error):
    """The text is not a valid UUID."""

    def __init__(self, value: str, cause=None):
        super().__init__(f"Malformed UUID: {value!r}", cause=cause)
        self.value = value


class ExternalToolError(Error):
    """VBoxManage could not be started or exited with an error."""

    def __init__(self, message, command: list[str], returncode: int | None = None, stderr: str = "", cause=None):
        details = [f"command: {' '.join(command)}"]
        if returncode is not None:
            details.append(f"exit code: {returncode}")
        if stderr:
            details.append(f"stderr: {stderr.strip()}")

        super().__init__(f"{message} ({', '.join(details)})", cause=cause)
        self.command = command
        self.returncode = returncode
        self.stderr = stderr


class ParseError(Error):
    """A configuration file could not be read or parsed."""

    def __init__(self, message, path: Path, cause=None):
        super().__init__(f"{message}: {path}", cause=cause)
        self.path = path


class RegistryParseError(ParseError):
    """The ``VirtualBox.xml`` registry could not be read or parsed."""


class SatelliteParseError(ParseError):
    """A ``.vbox`` machine file could not be read or parsed."""


class SchemaViolationError(Error):
    """A ``.vbox`` machine file does not contain exactly one machine."""

    def __init__(self, message, path: Path):
        super().__init__(f"{message}: {path}")
        self.path = path


class InvalidPortValueError(Error):
    """A port value is present but not numeric."""

    def __init__(self, name: str, value: str, cause=None):
        super().__init__(f"Invalid port value for {name}: {value!r}", cause=cause)
        self.name = name
        self.value = value
