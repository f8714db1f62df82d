from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from dissect.virtualbox.helpers.identity import parse_uuid
from dissect.virtualbox.helpers.utils import StrEnum, parse_bool, resolve_location

if TYPE_CHECKING:
    from collections.abc import Iterator
    from pathlib import Path
    from uuid import UUID
    from xml.etree.ElementTree import Element

    from dissect.virtualbox.manage import VBoxManage

log = logging.getLogger(__name__)

FORMAT_VDI = "VDI"


class HardDiskType(StrEnum):
    NORMAL = "Normal"
    IMMUTABLE = "Immutable"

    @classmethod
    def from_attribute(cls, value: str | None) -> HardDiskType:
        # VirtualBox omits the attribute for normal disks
        if not value or value == cls.NORMAL.value:
            return cls.NORMAL
        if value == cls.IMMUTABLE.value:
            return cls.IMMUTABLE

        log.warning("Unsupported hard disk type %r, treating as %s", value, cls.NORMAL.value)
        return cls.NORMAL


@dataclass
class HardDisk:
    uuid: UUID
    location: Path
    format: str
    type: HardDiskType = HardDiskType.NORMAL
    auto_reset: bool = False
    parent: UUID | None = None
    children: list[UUID] = field(default_factory=list)

    def ensure_auto_reset(self, manage: VBoxManage) -> None:
        """Turn on auto-reset for this disk, unless it is already on."""
        if self.auto_reset:
            return

        manage.enable_auto_reset(self.uuid)
        self.auto_reset = True

    def as_dict(self) -> dict[str, Any]:
        obj = {
            "uuid": str(self.uuid),
            "location": str(self.location),
            "format": self.format,
            "type": self.type.value,
        }
        if self.auto_reset:
            obj["auto_reset"] = True
        if self.children:
            obj["children"] = [str(child) for child in self.children]
        if self.parent is not None:
            obj["parent"] = str(self.parent)
        return obj


class HardDiskMap(dict):
    """All known hard disks by UUID.

    Differencing disks are stored next to their parent disk, the tree structure is kept in the
    ``parent`` and ``children`` fields.
    """

    def add_hard_disks(self, element: Element, parent: UUID | None, base_dir: Path) -> HardDisk:
        """Add the ``HardDisk`` element and all its nested child disks.

        Args:
            element: A ``HardDisk`` element from a ``MediaRegistry``.
            parent: The UUID of the parent disk, ``None`` for a base disk.
            base_dir: The directory to resolve relative locations against.

        Returns:
            The :class:`HardDisk` for ``element``.

        Raises:
            MalformedIdentifierError: If a disk has an invalid UUID.
            ValueError: If the ``autoReset`` attribute is not a boolean.
        """
        uuid = parse_uuid(element.get("uuid"))
        disk = HardDisk(
            uuid=uuid,
            location=resolve_location(element.get("location", ""), base_dir),
            format=element.get("format", ""),
            type=HardDiskType.from_attribute(element.get("type")),
            auto_reset=parse_bool(element.get("autoReset")),
            parent=parent,
        )
        log.debug("Adding hard disk %s (parent: %s): %s", uuid, parent, disk.location)

        for child_element in element.findall("HardDisk"):
            child = self.add_hard_disks(child_element, uuid, base_dir)
            disk.children.append(child.uuid)

        if uuid in self:
            log.warning("Duplicate hard disk %s, replacing %s with %s", uuid, self[uuid].location, disk.location)

        self[uuid] = disk
        return disk

    def roots(self) -> Iterator[HardDisk]:
        """Yield all base disks, the disks without a parent."""
        for disk in self.values():
            if disk.parent is None:
                yield disk

    def as_dict(self) -> dict[str, dict[str, Any]]:
        return {str(uuid): disk.as_dict() for uuid, disk in self.items()}
