from __future__ import annotations

import subprocess
from typing import TYPE_CHECKING
from unittest.mock import MagicMock, patch

import pytest

if TYPE_CHECKING:
    from collections.abc import Iterator


@pytest.fixture
def mock_run() -> Iterator[MagicMock]:
    """Replace ``subprocess.run`` for ``VBoxManage``, by default reporting no running machines."""
    with patch("dissect.virtualbox.manage.subprocess.run") as mock_run:
        mock_run.return_value = subprocess.CompletedProcess([], 0, stdout=b"", stderr=b"")
        yield mock_run
