from __future__ import annotations

import pytest

from conftest import battery_tree, build_dtb, u32
from dtb_tool.errors import EncodingMismatchError, NotFoundError
from dtb_tool.fdt.blob import decode, encode
from dtb_tool.fdt.patcher import PatchPlan, VoltageValue, apply, apply_plan, plan


def test_voltage_value_range():
    assert VoltageValue(3_800_000).to_cell() == b"\x00\x39\xfb\xc0"
    assert VoltageValue.from_cell(b"\x00\x43\x23\x80") == VoltageValue(4_400_000)
    with pytest.raises(ValueError):
        VoltageValue(-1)
    with pytest.raises(ValueError):
        VoltageValue(1 << 32)


def test_plan_records_old_and_new():
    blob = decode(build_dtb(battery_tree()))
    change = plan(blob, "voltage-max-design-microvolt", VoltageValue(3_800_000))
    assert change == PatchPlan("/battery", "voltage-max-design-microvolt",
                               VoltageValue(4_400_000), VoltageValue(3_800_000))


def test_patch_changes_only_the_property_bytes():
    original = build_dtb(battery_tree(), nops=True, extra_strings=["unused"])
    blob = decode(original)
    change = plan(blob, "voltage-max-design-microvolt", VoltageValue(3_800_000))
    patched = encode(apply_plan(blob, change))

    assert len(patched) == len(original)
    diff = [i for i, (a, b) in enumerate(zip(original, patched)) if a != b]
    assert diff
    start = original.index(u32(4_400_000))
    assert all(start <= i < start + 4 for i in diff)
    assert patched[start:start + 4] == u32(3_800_000)
    assert original[:start] == patched[:start]
    assert original[start + 4:] == patched[start + 4:]


def test_apply_does_not_touch_other_nodes():
    blob = decode(build_dtb(battery_tree()))
    apply(blob, "/battery", "voltage-max-design-microvolt", VoltageValue(3_900_000))
    again = decode(encode(blob))
    battery = again.root.child("battery")
    assert battery.properties["voltage-max-design-microvolt"].as_u32() == 3_900_000
    assert battery.properties["voltage-min-design-microvolt"].as_u32() == 3_000_000
    assert list(battery.properties) == [
        "compatible", "voltage-max-design-microvolt", "voltage-min-design-microvolt",
    ]


def test_apply_rejects_non_cell_property():
    blob = decode(build_dtb(battery_tree()))
    with pytest.raises(EncodingMismatchError, match="/battery/compatible"):
        apply(blob, "/battery", "compatible", VoltageValue(3_800_000))
    with pytest.raises(EncodingMismatchError, match="pmic@34/interrupts.*12 байт"):
        plan(blob, "interrupts", VoltageValue(3_800_000))


def test_apply_never_creates_properties():
    blob = decode(build_dtb(battery_tree()))
    with pytest.raises(NotFoundError):
        apply(blob, "/soc", "voltage-max-design-microvolt", VoltageValue(3_800_000))
    assert "voltage-max-design-microvolt" not in blob.root.child("soc").properties
