from __future__ import annotations

import ast
import logging
from dataclasses import dataclass, replace
from pathlib import Path

log = logging.getLogger(__name__)

CONFIG_NAME = ".vboxcfg.py"


@dataclass(frozen=True)
class Config:
    """Settings that can be overridden with a ``.vboxcfg.py`` file.

    Example ``.vboxcfg.py``::

        VBOXMANAGE = "/usr/local/bin/VBoxManage"
        FORWARDED_SERVICE = "webdriver"
    """

    # Path or name of the VBoxManage binary
    vboxmanage: str = "VBoxManage"
    # Name of the NAT forwarding rule of which the host port is exposed as the forwarded port
    forwarded_service: str = "selenium"


def load(paths: list[Path | str] | Path | str | None) -> Config:
    """Attempt to load one configuration from the provided path(s)."""

    if isinstance(paths, (Path, str)):
        paths = [paths]

    config = Config()
    config_file = _find_config_file(paths)

    if not config_file:
        return config

    log.debug("Loading configuration from %s", config_file)
    values = {}
    for key, value in _parse_ast(config_file.read_bytes()).items():
        field_name = key.lower()
        if field_name not in Config.__dataclass_fields__:
            log.debug("Skipping unknown configuration key %s", key)
            continue

        if not isinstance(value, str):
            log.warning("Ignoring configuration key %s in %s: expected a string", key, config_file)
            continue

        values[field_name] = value

    return replace(config, **values)


def _parse_ast(code: bytes) -> dict[str, str | int]:
    # Only allow basic value assignments
    obj = {}

    module = ast.parse(code)
    if not isinstance(module, ast.Module):
        log.debug("Config did not parse to a module AST -- skipping")
        return obj

    for statement in module.body:
        if (
            not isinstance(statement, ast.Assign)
            or len(statement.targets) != 1
            or not isinstance(statement.value, ast.Constant)
        ):
            log.debug("Skipping non-constant assignment")
            continue

        target = statement.targets[0]
        if not isinstance(target, ast.Name) or not isinstance(target.ctx, ast.Store):
            log.debug("Skipping non-name assignment store")
            continue

        obj[target.id] = statement.value.value

    return obj


def _find_config_file(paths: list[Path | str] | None) -> Path | None:
    """Find a config file in the given path(s) or any of their parents and return it.

    Parts of the path are allowed to not exist and the last part may be a filename.
    The root directory ('/') is never searched.
    """

    if not paths:
        return None

    config_file = None

    for path in paths:
        if not path:
            continue

        cur_path = Path(path).absolute()

        # Walk up to the first existing directory, the path may point to a file
        while cur_path.name != "" and not cur_path.is_dir():
            cur_path = cur_path.parent

        while not config_file and cur_path.name != "":
            cur_config = cur_path.joinpath(CONFIG_NAME)
            if cur_config.is_file():
                config_file = cur_config
            cur_path = cur_path.parent

        if config_file:
            break

    return config_file
