from __future__ import annotations

import re
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING

from dissect.hypervisor.descriptor.vbox import VBox

from dissect.virtualbox.exceptions import InvalidPortValueError

if TYPE_CHECKING:
    from xml.etree.ElementTree import Element

XML_TRUE = ("true", "1")
XML_FALSE = ("false", "0")

PORT_RE = re.compile(r"[+-]?[0-9]+")


class StrEnum(str, Enum):
    """Sortable and serializible string-based enum."""

    def __str__(self) -> str:
        return self.value


def strip_namespace(root: Element) -> Element:
    """Remove the VirtualBox XML namespace from all tags in the tree of ``root``.

    VirtualBox writes its files with ``xmlns="http://www.virtualbox.org/"``, files without the
    namespace are left as they are.
    """
    for element in root.iter():
        if isinstance(element.tag, str) and element.tag.startswith(VBox.VBOX_XML_NAMESPACE):
            element.tag = element.tag[len(VBox.VBOX_XML_NAMESPACE) :]
    return root


def parse_bool(value: str | None, default: bool = False) -> bool:
    """Parse an XML schema boolean (``true``, ``false``, ``1`` or ``0``).

    Raises:
        ValueError: If ``value`` is not a valid boolean.
    """
    if value is None:
        return default

    normalized = value.strip().lower()
    if normalized in XML_TRUE:
        return True
    if normalized in XML_FALSE:
        return False

    raise ValueError(f"Invalid boolean value: {value!r}")


def parse_port(name: str, value: str | None) -> int:
    """Parse a port number, a missing value is returned as ``0``.

    Raises:
        InvalidPortValueError: If ``value`` is not a plain decimal number.
    """
    if value is None:
        return 0

    if not PORT_RE.fullmatch(value):
        raise InvalidPortValueError(name, value)
    return int(value)


def resolve_location(location: str | Path, base_dir: Path) -> Path:
    """Return ``location`` when it is absolute, otherwise ``location`` relative to ``base_dir``."""
    location = Path(location)
    if location.is_absolute():
        return location
    return Path(base_dir).joinpath(location)
