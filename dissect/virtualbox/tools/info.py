#!/usr/bin/env python
from __future__ import annotations

import argparse
import json
import logging
from pathlib import Path
from typing import TYPE_CHECKING

from dissect.virtualbox.exceptions import Error, FatalError
from dissect.virtualbox.helpers import config as vboxconfig
from dissect.virtualbox.manage import VBoxManage
from dissect.virtualbox.tools.utils import (
    catch_sigpipe,
    configure_generic_arguments,
    process_generic_arguments,
    record_output,
)
from dissect.virtualbox.virtualbox import decode, default_path

if TYPE_CHECKING:
    from uuid import UUID

    from dissect.virtualbox.disk import HardDiskMap
    from dissect.virtualbox.virtualbox import VirtualBox

log = logging.getLogger(__name__)
logging.lastResort = None
logging.raiseExceptions = False


@catch_sigpipe
def main() -> int:
    help_formatter = argparse.ArgumentDefaultsHelpFormatter
    parser = argparse.ArgumentParser(
        description="vbox-info",
        fromfile_prefix_chars="@",
        formatter_class=help_formatter,
    )
    parser.add_argument(
        "config",
        metavar="CONFIG",
        nargs="?",
        type=Path,
        help="VirtualBox.xml to decode, defaults to the one of the current user",
    )
    parser.add_argument("-s", "--strings", action="store_true", help="print output as string")
    parser.add_argument("-r", "--record", action="store_true", help="print output as record")
    parser.add_argument("-j", "--json", action="store_true", help="output as pretty json")
    parser.add_argument("-J", "--jsonlines", action="store_true", help="output as one-line json")
    configure_generic_arguments(parser)

    args = parser.parse_args()
    process_generic_arguments(args)

    config_path = args.config or default_path()
    config = vboxconfig.load(config_path)
    manage = VBoxManage(args.vboxmanage or config.vboxmanage)

    try:
        vbox = decode(config_path, manage=manage, config=config)
    except FatalError as e:
        e.emit_last_message(log.error)
        return 1
    except Error as e:
        log.error(e)  # noqa: TRY400
        log.debug("", exc_info=e)
        return 1

    if args.jsonlines:
        print(json.dumps(vbox.as_dict()))
    elif args.json:
        print(json.dumps(vbox.as_dict(), indent=4))
    elif args.record:
        rs = record_output(args.strings)
        for record in vbox.records():
            rs.write(record)
        rs.flush()
    else:
        print_vbox_info(vbox)

    return 0


def print_vbox_info(vbox: VirtualBox) -> None:
    print(vbox)

    for machine in sorted(vbox.machines.values(), key=lambda m: m.name):
        print()
        print(f"{'Name':14s} : {machine.name}")
        print(f"{'UUID':14s} : {machine.uuid}")
        print(f"{'OS type':14s} : {machine.os_type}")
        print(f"{'Status':14s} : {machine.status}")
        print(f"{'Source':14s} : {machine.source}")
        if machine.vrde_port:
            print(f"{'VRDE port':14s} : {machine.vrde_port}")
        if machine.forwarded_port:
            print(f"{'Forwarded':14s} : {machine.forwarded_address()}")
        if machine.hard_disks:
            print(f"{'Hard disks':14s} : {', '.join(map(str, machine.hard_disks))}")

    roots = sorted(vbox.hard_disks.roots(), key=lambda disk: str(disk.location))
    if roots:
        print("\nHard disks")
    for disk in roots:
        print_disk_tree(vbox.hard_disks, disk.uuid)


def print_disk_tree(hard_disks: HardDiskMap, uuid: UUID, depth: int = 0) -> None:
    disk = hard_disks[uuid]
    values = f"uuid={disk.uuid} format={disk.format} type={disk.type} location={disk.location}"
    if disk.auto_reset:
        values += " autoreset"
    print(f"{'  ' * depth}- <HardDisk {values}>")

    for child in disk.children:
        print_disk_tree(hard_disks, child, depth + 1)


if __name__ == "__main__":
    main()
