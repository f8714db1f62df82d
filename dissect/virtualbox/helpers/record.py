from __future__ import annotations

from typing import TYPE_CHECKING

from flow.record import RecordDescriptor

if TYPE_CHECKING:
    from collections.abc import Sequence

    from flow.record.base import Record


class VirtualBoxRecordDescriptor(RecordDescriptor):
    """A RecordDescriptor with a ``config_path`` field automatically added.

    The field is filled with the registry path of the ``VirtualBox`` instance passed as the
    ``_vbox`` keyword argument.
    """

    _default_fields = (("path", "config_path"),)
    _input_fields = ("_vbox",)

    def __init__(self, name: str, fields: Sequence[tuple[str, str]] | None = None):
        fields = list(fields or [])
        default_field_names = {field_name for _, field_name in self._default_fields}

        for _, field_name in fields:
            if field_name in default_field_names:
                raise TypeError(f"Default field '{field_name}' is not allowed to be explicitly declared")

        super().__init__(name, fields=[*self._default_fields, *fields])

    def __call__(self, *args, **kwargs) -> Record:
        """Generate a record.

        The default fields are filled if the ``_vbox`` keyword argument is supplied, any
        explicitly supplied (keyword) arguments for these fields are discarded.
        """
        if args:
            raise ValueError("Args are not allowed in VirtualBoxRecordDescriptor")

        vbox = kwargs.get("_vbox")
        kwargs["config_path"] = vbox.path if vbox is not None else None

        for input_field in self._input_fields:
            kwargs.pop(input_field, None)

        return super().__call__(**kwargs)


VirtualBoxMachineRecord = VirtualBoxRecordDescriptor(
    "virtualization/virtualbox/machine",
    [
        ("string", "uuid"),
        ("string", "name"),
        ("string", "os_type"),
        ("path", "source"),
        ("string", "status"),
        ("string[]", "hard_disks"),
        ("varint", "vrde_port"),
        ("varint", "forwarded_port"),
    ],
)

VirtualBoxHardDiskRecord = VirtualBoxRecordDescriptor(
    "virtualization/virtualbox/hard_disk",
    [
        ("string", "uuid"),
        ("path", "location"),
        ("string", "format"),
        ("string", "type"),
        ("boolean", "auto_reset"),
        ("string", "parent"),
        ("string[]", "children"),
    ],
)
