from __future__ import annotations

import struct
import sys
from pathlib import Path

import pytest

_REPO_ROOT = Path(__file__).resolve().parents[1]
if str(_REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(_REPO_ROOT))

from dtb_tool import config

MAGIC = 0xD00DFEED
BEGIN_NODE, END_NODE, PROP, NOP, END = 1, 2, 3, 4, 9


def u32(*cells: int) -> bytes:
    return struct.pack(f">{len(cells)}I", *cells)


def s(*texts: str) -> bytes:
    return b"".join(t.encode("ascii") + b"\x00" for t in texts)


def _pad4(data: bytes) -> bytes:
    return data + bytes(-len(data) % 4)


def build_dtb(root, reserved=(), extra_strings=(), nops=False, tail=0,
              strings_first=False, version=17) -> bytes:
    """
    Independent DTB writer for tests.
    root is (name, [(prop_name, value_bytes), ...], [children...]).
    """
    strings = bytearray()
    offsets = {}

    def name_off(name):
        if name not in offsets:
            offsets[name] = len(strings)
            strings.extend(name.encode("ascii") + b"\x00")
        return offsets[name]

    for extra in extra_strings:
        name_off(extra)

    block = bytearray()

    def emit(node):
        name, props, children = node
        if nops:
            block.extend(u32(NOP))
        block.extend(u32(BEGIN_NODE))
        block.extend(_pad4(name.encode("ascii") + b"\x00"))
        for pname, value in props:
            if nops:
                block.extend(u32(NOP))
            block.extend(u32(PROP, len(value), name_off(pname)))
            block.extend(_pad4(value))
        for child in children:
            emit(child)
        if nops:
            block.extend(u32(NOP))
        block.extend(u32(END_NODE))

    emit(root)
    block.extend(u32(END))

    rsv = b"".join(struct.pack(">QQ", a, n) for a, n in reserved) + bytes(16)
    off_rsv = 40
    if strings_first:
        off_strings = off_rsv + len(rsv)
        off_struct = off_strings + len(strings) + (-len(strings) % 4)
        body = rsv + bytes(strings) + bytes(-len(strings) % 4) + bytes(block)
    else:
        off_struct = off_rsv + len(rsv)
        off_strings = off_struct + len(block)
        body = rsv + bytes(block) + bytes(strings)
    body += bytes(tail)
    total = 40 + len(body)
    header = struct.pack(">10I", MAGIC, total, off_struct, off_strings, off_rsv,
                         version, 16, 0, len(strings), len(block))
    return header + body


def battery_tree(voltage: int = 4_400_000):
    return ("", [("#address-cells", u32(1)), ("compatible", s("pine64,pinephone", "allwinner,sun50i-a64"))], [
        ("battery", [
            ("compatible", s("simple-battery")),
            ("voltage-max-design-microvolt", u32(voltage)),
            ("voltage-min-design-microvolt", u32(3_000_000)),
        ], []),
        ("soc", [("ranges", b"")], [
            ("i2c@1c2b000", [("status", s("okay"))], [
                ("pmic@34", [("reg", u32(0x34)), ("interrupts", u32(0, 32, 4))], []),
            ]),
        ]),
    ])


def two_battery_tree():
    return ("", [("compatible", s("test,board"))], [
        ("battery", [("voltage-max-design-microvolt", u32(4_400_000))], []),
        ("aux-battery", [("voltage-max-design-microvolt", u32(4_350_000))], []),
    ])


@pytest.fixture(autouse=True)
def _session_log(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    log_file = tmp_path / "logs" / "session.jsonl"
    monkeypatch.setattr(config, "LOG_FILE", log_file)
    return log_file


@pytest.fixture
def battery_dtb(tmp_path: Path) -> Path:
    path = tmp_path / "board.dtb"
    path.write_bytes(build_dtb(battery_tree()))
    return path


@pytest.fixture
def two_battery_dtb(tmp_path: Path) -> Path:
    path = tmp_path / "dual.dtb"
    path.write_bytes(build_dtb(two_battery_tree()))
    return path
