from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from defusedxml import DefusedXmlException, ElementTree

from dissect.virtualbox.exceptions import SatelliteParseError, SchemaViolationError
from dissect.virtualbox.helpers.identity import parse_uuid
from dissect.virtualbox.helpers.utils import StrEnum, parse_bool, parse_port, strip_namespace

if TYPE_CHECKING:
    from pathlib import Path
    from uuid import UUID
    from xml.etree.ElementTree import Element

    from dissect.virtualbox.disk import HardDiskMap
    from dissect.virtualbox.manage import VBoxManage

log = logging.getLogger(__name__)

VRDE_PORT_PROPERTY = "TCP/Ports"


class Status(StrEnum):
    OFF = "Off"
    RUNNING = "Running"


@dataclass
class Machine:
    uuid: UUID
    name: str
    source: Path
    os_type: str
    status: Status = Status.OFF
    hard_disks: list[UUID] = field(default_factory=list)
    vrde_port: int = 0
    forwarded_port: int = 0

    def start(self, manage: VBoxManage, headless: bool = False) -> None:
        manage.start(self.uuid, headless=headless)
        self.status = Status.RUNNING

    def power_off(self, manage: VBoxManage) -> None:
        manage.power_off(self.uuid)
        self.status = Status.OFF

    def forwarded_address(self) -> str:
        return f"0.0.0.0:{self.forwarded_port}"

    def as_dict(self) -> dict[str, Any]:
        obj = {
            "uuid": str(self.uuid),
            "name": self.name,
            "source": str(self.source),
            "os_type": self.os_type,
            "status": self.status.value,
            "hard_disks": [str(uuid) for uuid in self.hard_disks],
        }
        if self.vrde_port:
            obj["vrde_port"] = self.vrde_port
        if self.forwarded_port:
            obj["forwarded_port"] = self.forwarded_port
        return obj


class MachineMap(dict):
    """All known machines by UUID."""

    def as_dict(self) -> dict[str, dict[str, Any]]:
        return {str(uuid): machine.as_dict() for uuid, machine in self.items()}


def read_machine_element(path: Path) -> Element:
    """Read a ``.vbox`` file and return its only ``Machine`` element.

    Raises:
        SatelliteParseError: If the file can not be read or is not a VirtualBox XML file.
        SchemaViolationError: If the file does not contain exactly one machine.
    """
    try:
        root = strip_namespace(ElementTree.fromstring(path.read_bytes()))
    except OSError as e:
        raise SatelliteParseError("Unable to read machine file", path, cause=e)
    except (ElementTree.ParseError, DefusedXmlException) as e:
        raise SatelliteParseError(f"Invalid XML in machine file ({e})", path, cause=e)

    if root.tag != "VirtualBox":
        raise SatelliteParseError(f"Unexpected root element <{root.tag}> in machine file", path)

    machines = root.findall("Machine")
    if len(machines) != 1:
        raise SchemaViolationError(f"Expected exactly 1 machine, found {len(machines)}", path)

    return machines[0]


def find_property(properties: list[Element], name: str) -> str | None:
    """Return the value of the first property named ``name``."""
    for prop in properties:
        if prop.get("name") == name:
            return prop.get("value")
    return None


def vrde_port(element: Element) -> int:
    """Return the remote display port of a ``Machine`` element, ``0`` if disabled or not configured."""
    remote_display = element.find("Hardware/RemoteDisplay")
    if remote_display is None or not parse_bool(remote_display.get("enabled")):
        return 0

    value = find_property(remote_display.findall("VRDEProperties/Property"), VRDE_PORT_PROPERTY)
    # An empty value means the default port, which we don't know about
    if not value:
        return 0

    return parse_port(VRDE_PORT_PROPERTY, value)


def forwarded_port(element: Element, service: str) -> int:
    """Return the host port of the NAT forwarding rule named ``service``, ``0`` if there is none.

    If multiple rules have the same name, the last one wins.
    """
    port = 0
    matches = 0

    for rule in element.findall("Hardware/Network/Adapter/NAT/Forwarding"):
        name = rule.get("name")
        host_port = parse_port(f"{name}/hostport", rule.get("hostport"))
        parse_port(f"{name}/guestport", rule.get("guestport"))

        if name == service:
            port = host_port
            matches += 1

    if matches > 1:
        log.warning("Found %d forwarding rules named %r, using the last one (port %d)", matches, service, port)

    return port


def decode_machine(
    uuid_text: str,
    source: Path,
    running: set[UUID],
    hard_disks: HardDiskMap,
    forwarded_service: str,
) -> Machine:
    """Decode the ``.vbox`` file at ``source`` into a :class:`Machine`.

    All hard disks registered in the file are added to ``hard_disks``.

    Args:
        uuid_text: The UUID of the machine, as listed in the registry. It is parsed after the
            ``.vbox`` file is read.
        source: Absolute path to the ``.vbox`` file.
        running: The UUIDs of the currently running machines.
        hard_disks: The shared hard disk table.
        forwarded_service: The name of the NAT forwarding rule to take the forwarded port from.
    """
    element = read_machine_element(source)
    uuid = parse_uuid(uuid_text)

    try:
        machine = Machine(
            uuid=uuid,
            name=element.get("name", ""),
            source=source,
            os_type=element.get("OSType", ""),
            status=Status.RUNNING if uuid in running else Status.OFF,
            vrde_port=vrde_port(element),
            forwarded_port=forwarded_port(element, forwarded_service),
        )

        for disk_element in element.findall("MediaRegistry/HardDisks/HardDisk"):
            hard_disks.add_hard_disks(disk_element, None, source.parent)
    except ValueError as e:
        raise SatelliteParseError(f"Invalid attribute value in machine file ({e})", source, cause=e)

    for image in element.findall("StorageControllers/StorageController/AttachedDevice/Image"):
        machine.hard_disks.append(parse_uuid(image.get("uuid")))

    log.debug("Decoded machine %s (%s): %s", machine.name, uuid, machine.status)
    return machine
