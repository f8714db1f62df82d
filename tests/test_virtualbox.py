from __future__ import annotations

import json
from pathlib import Path
from typing import TYPE_CHECKING
from unittest.mock import Mock, patch
from uuid import UUID

import pytest

from dissect.virtualbox.disk import HardDiskType
from dissect.virtualbox.exceptions import (
    ExternalToolError,
    MalformedIdentifierError,
    RegistryParseError,
    SatelliteParseError,
    SchemaViolationError,
)
from dissect.virtualbox.helpers.config import Config
from dissect.virtualbox.machine import Status, decode_machine
from dissect.virtualbox.manage import VBoxManage
from dissect.virtualbox.virtualbox import decode, decode_default, default_path, read_machine_entries
from tests._utils import absolute_path, runningvms_output, write_machine, write_registry

if TYPE_CHECKING:
    from unittest.mock import MagicMock

DEMO_UUID = UUID("a1b2c3d4-0000-0000-0000-000000000001")
DEMO_DISK_UUID = UUID("a1b2c3d4-0000-0000-0000-000000000002")

BUILDER_UUID = UUID("5f4d0a2e-6f0b-4c8e-9c1d-3b2a1f0e9d8c")
BUILDER_BASE_UUID = UUID("0c9a4b1e-2d3f-4a5b-8c6d-7e8f90a1b2c3")
BUILDER_CHILD_UUID = UUID("1d2e3f40-5a6b-4c7d-8e9f-a0b1c2d3e4f5")
BUILDER_GRANDCHILD_UUID = UUID("2e3f4051-6b7c-4d8e-9fa0-b1c2d3e4f506")
SHARED_UUID = UUID("3f405162-7c8d-4e9f-a0b1-c2d3e4f50617")

DEMO_MACHINE = """
    <MediaRegistry>
      <HardDisks>
        <HardDisk uuid="{A1B2C3D4-0000-0000-0000-000000000002}" location="disk.vdi" format="VDI"/>
      </HardDisks>
    </MediaRegistry>
    <Hardware>
      <RemoteDisplay enabled="false"/>
    </Hardware>
    <StorageControllers>
      <StorageController name="SATA">
        <AttachedDevice type="HardDisk" port="0" device="0">
          <Image uuid="{A1B2C3D4-0000-0000-0000-000000000002}"/>
        </AttachedDevice>
      </StorageController>
    </StorageControllers>
"""


@pytest.fixture
def demo_registry(tmp_path: Path) -> Path:
    write_machine(tmp_path.joinpath("m.xml"), DEMO_MACHINE)
    return write_registry(tmp_path.joinpath("VirtualBox.xml"), [("A1B2C3D4-0000-0000-0000-000000000001", "m.xml")])


def test_decode_demo_off(mock_run: MagicMock, tmp_path: Path, demo_registry: Path) -> None:
    vbox = decode(demo_registry)

    assert vbox.path == demo_registry
    assert list(vbox.machines) == [DEMO_UUID]

    machine = vbox.machines[DEMO_UUID]
    assert machine.name == "demo"
    assert machine.os_type == "Ubuntu_64"
    assert machine.source == tmp_path.joinpath("m.xml")
    assert machine.status == Status.OFF
    assert machine.vrde_port == 0
    assert machine.forwarded_port == 0
    assert machine.hard_disks == [DEMO_DISK_UUID]

    assert list(vbox.hard_disks) == [DEMO_DISK_UUID]
    disk = vbox.hard_disks[DEMO_DISK_UUID]
    assert disk.location == tmp_path.joinpath("disk.vdi")
    assert disk.location.is_absolute()
    assert disk.parent is None
    assert disk.children == []

    assert mock_run.call_args.args[0] == ["VBoxManage", "list", "runningvms"]


def test_decode_demo_running(mock_run: MagicMock, demo_registry: Path) -> None:
    mock_run.return_value.stdout = b'"demo" {A1B2C3D4-0000-0000-0000-000000000001}\n'

    vbox = decode(demo_registry)

    assert vbox.machines[DEMO_UUID].status == Status.RUNNING


def test_decode_status_other_machine_running(mock_run: MagicMock, demo_registry: Path) -> None:
    mock_run.return_value.stdout = runningvms_output(("builder", str(BUILDER_UUID)))

    vbox = decode(demo_registry)

    assert vbox.machines[DEMO_UUID].status == Status.OFF


def test_decode_prober_failure(mock_run: MagicMock, tmp_path: Path) -> None:
    mock_run.side_effect = FileNotFoundError(2, "No such file or directory", "VBoxManage")

    # The running machines are listed before the registry is even read
    with pytest.raises(ExternalToolError):
        decode(tmp_path.joinpath("missing.xml"))


def test_decode_two_machines_in_satellite(mock_run: MagicMock, tmp_path: Path) -> None:
    write_machine(tmp_path.joinpath("m.xml"), DEMO_MACHINE, machines=2)
    registry = write_registry(tmp_path.joinpath("VirtualBox.xml"), [(str(DEMO_UUID), "m.xml")])

    with pytest.raises(SchemaViolationError) as exc_info:
        decode(registry)

    assert exc_info.value.path == tmp_path.joinpath("m.xml")


def test_decode_missing_satellite(mock_run: MagicMock, tmp_path: Path) -> None:
    registry = write_registry(tmp_path.joinpath("VirtualBox.xml"), [(str(DEMO_UUID), "demo/demo.vbox")])

    with pytest.raises(SatelliteParseError) as exc_info:
        decode(registry)

    assert exc_info.value.path == tmp_path.joinpath("demo/demo.vbox")


def test_decode_stops_at_first_error(mock_run: MagicMock, tmp_path: Path) -> None:
    write_machine(tmp_path.joinpath("m.xml"), DEMO_MACHINE)
    registry = write_registry(
        tmp_path.joinpath("VirtualBox.xml"),
        [(str(BUILDER_UUID), "missing.vbox"), (str(DEMO_UUID), "m.xml")],
    )

    with (
        patch("dissect.virtualbox.virtualbox.decode_machine", wraps=decode_machine) as mock_decode_machine,
        pytest.raises(SatelliteParseError),
    ):
        decode(registry)

    assert mock_decode_machine.call_count == 1


def test_decode_malformed_machine_uuid(mock_run: MagicMock, tmp_path: Path) -> None:
    write_machine(tmp_path.joinpath("m.xml"), DEMO_MACHINE)
    registry = tmp_path.joinpath("VirtualBox.xml")
    registry.write_text(
        "<VirtualBox><Global><MachineRegistry>"
        '<MachineEntry uuid="{demo}" src="m.xml"/>'
        "</MachineRegistry></Global></VirtualBox>"
    )

    with pytest.raises(MalformedIdentifierError):
        decode(registry)


def test_decode_missing_satellite_and_malformed_uuid(mock_run: MagicMock, tmp_path: Path) -> None:
    registry = write_registry(tmp_path.joinpath("VirtualBox.xml"), [("not-a-uuid", "missing.vbox")])

    with pytest.raises(SatelliteParseError) as exc_info:
        decode(registry)

    assert exc_info.value.path == tmp_path.joinpath("missing.vbox")


def test_decode_two_machines_and_malformed_uuid(mock_run: MagicMock, tmp_path: Path) -> None:
    write_machine(tmp_path.joinpath("m.xml"), DEMO_MACHINE, machines=2)
    registry = write_registry(tmp_path.joinpath("VirtualBox.xml"), [("not-a-uuid", "m.xml")])

    with pytest.raises(SchemaViolationError):
        decode(registry)


def test_decode_namespaced(mock_run: MagicMock, demo_registry: Path) -> None:
    assert 'xmlns="http://www.virtualbox.org/"' in demo_registry.read_text()
    assert 'xmlns="http://www.virtualbox.org/"' in demo_registry.with_name("m.xml").read_text()

    vbox = decode(demo_registry)

    assert list(vbox.machines) == [DEMO_UUID]
    assert vbox.machines[DEMO_UUID].hard_disks == [DEMO_DISK_UUID]
    assert list(vbox.hard_disks) == [DEMO_DISK_UUID]


def test_decode_missing_registry(mock_run: MagicMock, tmp_path: Path) -> None:
    with pytest.raises(RegistryParseError) as exc_info:
        decode(tmp_path.joinpath("VirtualBox.xml"))

    assert exc_info.value.path == tmp_path.joinpath("VirtualBox.xml")


@pytest.mark.parametrize(
    ("content", "match"),
    [
        ("<VirtualBox><Global>", "Invalid XML"),
        ("<!DOCTYPE x [<!ENTITY a 'b'>]><VirtualBox>&a;</VirtualBox>", "Invalid XML"),
        ("<configuration/>", "Unexpected root element <configuration>"),
    ],
)
def test_decode_invalid_registry(mock_run: MagicMock, tmp_path: Path, content: str, match: str) -> None:
    registry = tmp_path.joinpath("VirtualBox.xml")
    registry.write_text(content)

    with pytest.raises(RegistryParseError, match=match):
        decode(registry)


def test_decode_empty_registry(mock_run: MagicMock, tmp_path: Path) -> None:
    vbox = decode(write_registry(tmp_path.joinpath("VirtualBox.xml"), []))

    assert vbox.machines == {}
    assert vbox.hard_disks == {}


def test_decode_absolute_src(mock_run: MagicMock, tmp_path: Path) -> None:
    machine_dir = tmp_path.joinpath("VirtualBox VMs", "demo")
    machine_dir.mkdir(parents=True)
    write_machine(machine_dir.joinpath("demo.vbox"), DEMO_MACHINE)

    config_dir = tmp_path.joinpath("config")
    config_dir.mkdir()
    registry = write_registry(
        config_dir.joinpath("VirtualBox.xml"), [(str(DEMO_UUID), machine_dir.joinpath("demo.vbox"))]
    )

    vbox = decode(registry)

    assert vbox.machines[DEMO_UUID].source == machine_dir.joinpath("demo.vbox")
    assert vbox.hard_disks[DEMO_DISK_UUID].location == machine_dir.joinpath("disk.vdi")


def test_decode_config_file(mock_run: MagicMock, tmp_path: Path) -> None:
    write_machine(
        tmp_path.joinpath("m.xml"),
        """
        <Hardware>
          <Network>
            <Adapter slot="0">
              <NAT>
                <Forwarding name="selenium" proto="1" hostport="4444" guestport="4444"/>
                <Forwarding name="webdriver" proto="1" hostport="9515" guestport="9515"/>
              </NAT>
            </Adapter>
          </Network>
        </Hardware>
        """,
    )
    registry = write_registry(tmp_path.joinpath("VirtualBox.xml"), [(str(DEMO_UUID), "m.xml")])
    tmp_path.joinpath(".vboxcfg.py").write_text(
        'VBOXMANAGE = "/opt/VirtualBox/VBoxManage"\nFORWARDED_SERVICE = "webdriver"\n'
    )

    vbox = decode(registry)

    assert vbox.machines[DEMO_UUID].forwarded_port == 9515
    assert mock_run.call_args.args[0][0] == "/opt/VirtualBox/VBoxManage"


def test_decode_explicit_manage_and_config(demo_registry: Path) -> None:
    manage = Mock(spec=VBoxManage)
    manage.running_machines.return_value = {DEMO_UUID}

    vbox = decode(demo_registry, manage=manage, config=Config(forwarded_service="ssh"))

    assert vbox.machines[DEMO_UUID].status == Status.RUNNING
    manage.running_machines.assert_called_once_with()


def test_decode_data(mock_run: MagicMock) -> None:
    mock_run.return_value.stdout = runningvms_output(("builder", str(BUILDER_UUID)))
    registry = absolute_path("_data/virtualbox/VirtualBox.xml")
    base_dir = registry.parent

    vbox = decode(registry)

    assert set(vbox.machines) == {DEMO_UUID, BUILDER_UUID}
    assert len(vbox.hard_disks) == 5

    demo = vbox.machines[DEMO_UUID]
    assert demo.name == "demo"
    assert demo.status == Status.OFF
    assert demo.source == base_dir.joinpath("Machines/demo/demo.vbox")
    assert demo.vrde_port == 0
    assert demo.forwarded_port == 4444
    assert demo.forwarded_address() == "0.0.0.0:4444"
    assert demo.hard_disks == [DEMO_DISK_UUID]

    builder = vbox.machines[BUILDER_UUID]
    assert builder.name == "builder"
    assert builder.os_type == "Windows10_64"
    assert builder.status == Status.RUNNING
    assert builder.vrde_port == 5001
    assert builder.forwarded_port == 0
    assert builder.hard_disks == [BUILDER_GRANDCHILD_UUID, SHARED_UUID]

    base = vbox.hard_disks[BUILDER_BASE_UUID]
    child = vbox.hard_disks[BUILDER_CHILD_UUID]
    grandchild = vbox.hard_disks[BUILDER_GRANDCHILD_UUID]
    shared = vbox.hard_disks[SHARED_UUID]

    assert base.location == base_dir.joinpath("Machines/builder/builder.vdi")
    assert base.children == [BUILDER_CHILD_UUID]
    assert base.parent is None

    assert child.parent == BUILDER_BASE_UUID
    assert child.children == [BUILDER_GRANDCHILD_UUID]
    assert child.auto_reset is True
    assert child.location == base_dir.joinpath(f"Machines/builder/Snapshots/{{{BUILDER_CHILD_UUID}}}.vdi")

    assert grandchild.parent == BUILDER_CHILD_UUID
    assert grandchild.children == []
    assert grandchild.auto_reset is False

    assert shared.location == Path("/srv/images/shared.vdi")
    assert shared.type == HardDiskType.IMMUTABLE

    assert {disk.uuid for disk in vbox.hard_disks.roots()} == {DEMO_DISK_UUID, BUILDER_BASE_UUID, SHARED_UUID}


def test_as_dict(mock_run: MagicMock, tmp_path: Path, demo_registry: Path) -> None:
    vbox = decode(demo_registry)

    obj = json.loads(json.dumps(vbox.as_dict()))
    assert obj == {
        "HardDisks": {
            "a1b2c3d4-0000-0000-0000-000000000002": {
                "uuid": "a1b2c3d4-0000-0000-0000-000000000002",
                "location": str(tmp_path.joinpath("disk.vdi")),
                "format": "VDI",
                "type": "Normal",
            },
        },
        "Machines": {
            "a1b2c3d4-0000-0000-0000-000000000001": {
                "uuid": "a1b2c3d4-0000-0000-0000-000000000001",
                "name": "demo",
                "source": str(tmp_path.joinpath("m.xml")),
                "os_type": "Ubuntu_64",
                "status": "Off",
                "hard_disks": ["a1b2c3d4-0000-0000-0000-000000000002"],
            },
        },
    }


def test_records(mock_run: MagicMock, demo_registry: Path) -> None:
    vbox = decode(demo_registry)

    machine_record, disk_record = list(vbox.records())

    assert machine_record._desc.name == "virtualization/virtualbox/machine"
    assert machine_record.uuid == str(DEMO_UUID)
    assert machine_record.name == "demo"
    assert machine_record.status == "Off"
    assert machine_record.hard_disks == [str(DEMO_DISK_UUID)]
    assert str(machine_record.config_path) == str(demo_registry)

    assert disk_record._desc.name == "virtualization/virtualbox/hard_disk"
    assert disk_record.uuid == str(DEMO_DISK_UUID)
    assert disk_record.parent is None
    assert disk_record.type == "Normal"


def test_read_machine_entries() -> None:
    registry = absolute_path("_data/virtualbox/VirtualBox.xml")

    entries = read_machine_entries(registry)

    assert [(entry.uuid, entry.source) for entry in entries] == [
        ("{a1b2c3d4-0000-0000-0000-000000000001}", registry.parent.joinpath("Machines/demo/demo.vbox")),
        ("{5f4d0a2e-6f0b-4c8e-9c1d-3b2a1f0e9d8c}", registry.parent.joinpath("Machines/builder/builder.vbox")),
    ]


@pytest.mark.parametrize(
    ("user_path", "system"),
    [
        (".config/VirtualBox", "Linux"),
        (".VirtualBox", "Windows"),
        ("Library/VirtualBox", "Darwin"),
    ],
)
def test_default_path_existing(tmp_path: Path, user_path: str, system: str) -> None:
    config_dir = tmp_path.joinpath(user_path)
    config_dir.mkdir(parents=True)
    config_dir.joinpath("VirtualBox.xml").touch()

    with patch("dissect.virtualbox.virtualbox.platform.system", return_value=system):
        assert default_path(tmp_path) == config_dir.joinpath("VirtualBox.xml")


@pytest.mark.parametrize(
    ("system", "expected"),
    [
        ("Linux", ".VirtualBox/VirtualBox.xml"),
        ("Windows", ".VirtualBox/VirtualBox.xml"),
        ("Darwin", "Library/VirtualBox/VirtualBox.xml"),
    ],
)
def test_default_path_fallback(tmp_path: Path, system: str, expected: str) -> None:
    with patch("dissect.virtualbox.virtualbox.platform.system", return_value=system):
        assert default_path(tmp_path) == tmp_path.joinpath(expected)


def test_decode_default(mock_run: MagicMock, demo_registry: Path) -> None:
    with patch("dissect.virtualbox.virtualbox.default_path", return_value=demo_registry):
        vbox = decode_default()

    assert list(vbox.machines) == [DEMO_UUID]
