"""Tests for the command line entry point."""

from __future__ import annotations

from pathlib import Path

import pytest

from govee_mqtt import __version__
from govee_mqtt.__main__ import main


def test_invalid_configuration_exits_with_usage_error(tmp_path: Path) -> None:
    """Configuration errors are reported and exit with status 2."""

    assert main(["--config", str(tmp_path / "missing.yaml")]) == 2


def test_version_flag(capsys: pytest.CaptureFixture[str]) -> None:
    """--version prints the package version."""

    with pytest.raises(SystemExit) as excinfo:
        main(["--version"])

    assert excinfo.value.code == 0
    assert __version__ in capsys.readouterr().out
