from __future__ import annotations

import logging
import re
from uuid import UUID

from dissect.virtualbox.exceptions import FatalError, MalformedIdentifierError

log = logging.getLogger(__name__)

_UUID_PATTERN = r"[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}"

# VirtualBox writes UUIDs in its XML files as ``{...}``
UUID_TEXT_RE = re.compile(rf"\{{{_UUID_PATTERN}\}}|{_UUID_PATTERN}")
UUID_RE = re.compile(_UUID_PATTERN.encode())


def parse_uuid(value: str) -> UUID:
    """Parse a ``8-4-4-4-12`` hex UUID, optionally wrapped in curly braces.

    Args:
        value: The text to parse.

    Raises:
        MalformedIdentifierError: If ``value`` is not a UUID in the expected form.
    """
    if not isinstance(value, str) or not UUID_TEXT_RE.fullmatch(value):
        raise MalformedIdentifierError(value)

    return UUID(value.strip("{}"))


def extract_uuids(data: bytes) -> list[UUID]:
    """Return all UUIDs found in ``data`` in order of appearance."""
    uuids = []

    for match in UUID_RE.finditer(data):
        text = match.group().decode()
        try:
            uuids.append(parse_uuid(text))
        except MalformedIdentifierError as e:
            log.critical("Failed to parse UUID %r despite matching the UUID pattern", text)
            raise FatalError("UUID pattern matched unparseable text", cause=e)

    return uuids
