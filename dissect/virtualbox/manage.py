from __future__ import annotations

import logging
import subprocess
from dataclasses import dataclass
from typing import TYPE_CHECKING

from dissect.virtualbox.exceptions import ExternalToolError, FatalError
from dissect.virtualbox.helpers.identity import extract_uuids

if TYPE_CHECKING:
    from uuid import UUID

log = logging.getLogger(__name__)


@dataclass
class CreateMachine:
    """Arguments for ``VBoxManage createvm``."""

    name: str
    os_type: str
    register: bool
    base_folder: str


class VBoxManage:
    """Runs ``VBoxManage`` commands.

    Every command runs to completion. A binary that cannot be started or a non-zero exit code
    raises :class:`~dissect.virtualbox.exceptions.ExternalToolError`.

    Args:
        binary: Path or name of the ``VBoxManage`` executable.
    """

    def __init__(self, binary: str = "VBoxManage"):
        self.binary = binary

    def __repr__(self) -> str:
        return f"<VBoxManage binary={self.binary!r}>"

    def run(self, *args: str, combine_output: bool = False) -> bytes:
        """Run ``VBoxManage`` with ``args`` and return its output.

        Args:
            args: The command line arguments.
            combine_output: Return stderr together with stdout.
        """
        command = [self.binary, *args]
        log.debug("Running %s", command)

        try:
            result = subprocess.run(
                command,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT if combine_output else subprocess.PIPE,
            )
        except OSError as e:
            raise ExternalToolError("Unable to run VBoxManage", command, cause=e)

        if result.returncode != 0:
            stderr = result.stdout if combine_output else result.stderr
            raise ExternalToolError(
                "VBoxManage failed",
                command,
                returncode=result.returncode,
                stderr=(stderr or b"").decode(errors="backslashreplace"),
            )

        return result.stdout

    def running_machines(self) -> set[UUID]:
        """Return the UUIDs of all currently running machines."""
        output = self.run("list", "runningvms")
        running = set(extract_uuids(output))
        log.debug("Found %d running machine(s)", len(running))
        return running

    def start(self, uuid: UUID, headless: bool = False) -> None:
        self.run("startvm", str(uuid), "--type", "headless" if headless else "gui")

    def power_off(self, uuid: UUID) -> None:
        self.run("controlvm", str(uuid), "poweroff")

    def enable_auto_reset(self, uuid: UUID) -> None:
        self.run("modifyhd", str(uuid), "--autoreset", "on")

    def create_machine(self, machine: CreateMachine) -> UUID:
        """Create a new machine and return its UUID.

        The output of ``createvm`` must contain exactly one UUID.
        """
        args = ["createvm", "--name", machine.name, "--ostype", machine.os_type]
        if machine.register:
            args.append("--register")
        args.extend(["--basefolder", machine.base_folder])

        uuids = extract_uuids(self.run(*args, combine_output=True))
        if len(uuids) != 1:
            log.critical("Expected exactly 1 UUID in the output of createvm, found %d", len(uuids))
            raise FatalError(f"Expected exactly 1 UUID in the output of createvm, found {len(uuids)}")

        log.info("Created machine %s (%s)", machine.name, uuids[0])
        return uuids[0]
