from __future__ import annotations

import os
import shlex
from pathlib import Path

import pytest

from dtb_tool.power.schedule import MARKER, PACKAGE_ROOT, ReconcileSchedule


def test_install_writes_executable_boot_script(tmp_path: Path):
    script = tmp_path / "local.d" / "charger-reconcile.start"
    schedule = ReconcileSchedule(script)

    assert schedule.install(Path("/sys/class/power_supply/usb/online"), delay_ms=1500, boot_delay_s=45)
    text = script.read_text()
    assert text.startswith("#!/bin/sh\n")
    assert MARKER in text
    assert "sleep 45" in text
    assert "reconcile-once --attribute /sys/class/power_supply/usb/online --delay-ms 1500" in text
    assert os.access(script, os.X_OK)
    assert schedule.is_installed()


def test_install_is_idempotent(tmp_path: Path):
    schedule = ReconcileSchedule(tmp_path / "reconcile.start")
    assert schedule.install() is True
    assert schedule.install() is False
    assert schedule.install(delay_ms=2000) is True


def test_remove(tmp_path: Path):
    schedule = ReconcileSchedule(tmp_path / "reconcile.start")
    assert schedule.remove() is False
    schedule.install()
    assert schedule.remove() is True
    assert not schedule.script.exists()
    assert not schedule.is_installed()


def test_foreign_script_is_left_alone(tmp_path: Path):
    script = tmp_path / "reconcile.start"
    script.write_text("#!/bin/sh\necho mine\n")
    schedule = ReconcileSchedule(script)

    with pytest.raises(FileExistsError):
        schedule.install()
    with pytest.raises(FileExistsError):
        schedule.remove()
    assert script.read_text() == "#!/bin/sh\necho mine\n"


def test_script_runs_from_package_root(tmp_path: Path):
    script = tmp_path / "reconcile.start"
    ReconcileSchedule(script).install()
    assert f"cd {shlex.quote(str(PACKAGE_ROOT))} || exit 1\n" in script.read_text()
    assert (PACKAGE_ROOT / "dtb_tool" / "main.py").exists()


def test_check_ownership(tmp_path: Path):
    script = tmp_path / "reconcile.start"
    schedule = ReconcileSchedule(script)
    schedule.check_ownership()
    schedule.install()
    schedule.check_ownership()
    script.write_text("#!/bin/sh\n")
    with pytest.raises(FileExistsError):
        schedule.check_ownership()
