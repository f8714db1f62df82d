from __future__ import annotations

import logging
import platform
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any

from defusedxml import DefusedXmlException, ElementTree

from dissect.virtualbox.disk import HardDiskMap
from dissect.virtualbox.exceptions import RegistryParseError
from dissect.virtualbox.helpers import config as vboxconfig
from dissect.virtualbox.helpers.identity import parse_uuid
from dissect.virtualbox.helpers.record import VirtualBoxHardDiskRecord, VirtualBoxMachineRecord
from dissect.virtualbox.helpers.utils import resolve_location, strip_namespace
from dissect.virtualbox.machine import MachineMap, decode_machine
from dissect.virtualbox.manage import VBoxManage

if TYPE_CHECKING:
    from collections.abc import Iterator

    from flow.record.base import Record

    from dissect.virtualbox.helpers.config import Config

log = logging.getLogger(__name__)

CONFIG_FILE_NAME = "VirtualBox.xml"

USER_PATHS = (
    # Linux (VirtualBox 4.3 and newer)
    ".config/VirtualBox",
    # Windows and older Linux
    ".VirtualBox",
    # macOS
    "Library/VirtualBox",
)


@dataclass
class MachineEntry:
    """A ``MachineEntry`` from the ``MachineRegistry`` of a ``VirtualBox.xml`` file."""

    uuid: str
    source: Path


class VirtualBox:
    """The machines and hard disks of a VirtualBox installation.

    Hard disks are stored in one flat table for all machines, machines refer to their attached
    disks by UUID.
    """

    def __init__(self, path: Path | None = None):
        self.path = path
        self.machines = MachineMap()
        self.hard_disks = HardDiskMap()

    def __repr__(self) -> str:
        return f"<VirtualBox path={self.path} machines={len(self.machines)} hard_disks={len(self.hard_disks)}>"

    def as_dict(self) -> dict[str, Any]:
        return {
            "HardDisks": self.hard_disks.as_dict(),
            "Machines": self.machines.as_dict(),
        }

    def records(self) -> Iterator[Record]:
        for machine in self.machines.values():
            yield VirtualBoxMachineRecord(
                uuid=str(machine.uuid),
                name=machine.name,
                os_type=machine.os_type,
                source=machine.source,
                status=machine.status.value,
                hard_disks=[str(uuid) for uuid in machine.hard_disks],
                vrde_port=machine.vrde_port,
                forwarded_port=machine.forwarded_port,
                _vbox=self,
            )

        for disk in self.hard_disks.values():
            yield VirtualBoxHardDiskRecord(
                uuid=str(disk.uuid),
                location=disk.location,
                format=disk.format,
                type=disk.type.value,
                auto_reset=disk.auto_reset,
                parent=str(disk.parent) if disk.parent is not None else None,
                children=[str(uuid) for uuid in disk.children],
                _vbox=self,
            )


def read_machine_entries(path: Path) -> list[MachineEntry]:
    """Read the ``MachineRegistry`` of a ``VirtualBox.xml`` file.

    Relative ``src`` paths are resolved against the directory of ``path``.

    Raises:
        RegistryParseError: If the file can not be read or is not a VirtualBox XML file.
    """
    try:
        root = strip_namespace(ElementTree.fromstring(path.read_bytes()))
    except OSError as e:
        raise RegistryParseError("Unable to read registry file", path, cause=e)
    except (ElementTree.ParseError, DefusedXmlException) as e:
        raise RegistryParseError(f"Invalid XML in registry file ({e})", path, cause=e)

    if root.tag != "VirtualBox":
        raise RegistryParseError(f"Unexpected root element <{root.tag}> in registry file", path)

    entries = []
    for element in root.findall("Global/MachineRegistry/MachineEntry"):
        entries.append(
            MachineEntry(
                uuid=element.get("uuid"),
                source=resolve_location(element.get("src", ""), path.parent),
            )
        )

    return entries


def decode(
    config_path: Path | str,
    manage: VBoxManage | None = None,
    config: Config | None = None,
) -> VirtualBox:
    """Decode a ``VirtualBox.xml`` registry and the ``.vbox`` files of all its machines.

    The status of every machine is taken from ``VBoxManage list runningvms``. The first error
    aborts the decode.

    Args:
        config_path: Path to the ``VirtualBox.xml`` file.
        manage: The :class:`VBoxManage` to query for running machines.
        config: Settings, loaded from a ``.vboxcfg.py`` next to ``config_path`` if not given.

    Raises:
        ExternalToolError: If the running machines could not be listed.
        RegistryParseError: If the registry file could not be parsed.
        SatelliteParseError: If a ``.vbox`` file could not be parsed.
        SchemaViolationError: If a ``.vbox`` file does not contain exactly one machine.
        MalformedIdentifierError: If a machine or disk UUID is invalid.
        InvalidPortValueError: If a port number is not numeric.
    """
    path = Path(config_path).absolute()
    config = config or vboxconfig.load(path)
    manage = manage or VBoxManage(config.vboxmanage)

    running = manage.running_machines()

    vbox = VirtualBox(path)
    for entry in read_machine_entries(path):
        machine = decode_machine(entry.uuid, entry.source, running, vbox.hard_disks, config.forwarded_service)
        vbox.machines[machine.uuid] = machine

    log.info("Decoded %s: %d machine(s), %d hard disk(s)", path, len(vbox.machines), len(vbox.hard_disks))
    return vbox


def default_path(home: Path | None = None) -> Path:
    """Return the path of the ``VirtualBox.xml`` of the current user."""
    home = home or Path.home()

    for user_path in USER_PATHS:
        path = home.joinpath(user_path, CONFIG_FILE_NAME)
        if path.is_file():
            return path

    if platform.system() == "Darwin":
        return home.joinpath("Library/VirtualBox", CONFIG_FILE_NAME)
    return home.joinpath(".VirtualBox", CONFIG_FILE_NAME)


def decode_default(manage: VBoxManage | None = None) -> VirtualBox:
    """Decode the ``VirtualBox.xml`` of the current user."""
    return decode(default_path(), manage=manage)
