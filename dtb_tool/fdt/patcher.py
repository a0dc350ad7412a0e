# fdt/patcher.py
"""Замена значения напряжения в существующем 4-байтовом свойстве."""

from __future__ import annotations

import struct
from dataclasses import dataclass
from typing import Optional

from ..errors import EncodingMismatchError
from .blob import Blob
from .locator import Match, resolve

U32_MAX = 0xFFFFFFFF


@dataclass(frozen=True, order=True)
class VoltageValue:
    """Напряжение в микровольтах, одна big-endian ячейка u32."""

    microvolts: int

    def __post_init__(self):
        if not (0 <= self.microvolts <= U32_MAX):
            raise ValueError(f"{self.microvolts} мкВ не помещается в u32")

    def to_cell(self) -> bytes:
        return struct.pack(">I", self.microvolts)

    @classmethod
    def from_cell(cls, data: bytes) -> "VoltageValue":
        if len(data) != 4:
            raise EncodingMismatchError(f"ожидалось 4 байта, получено {len(data)}")
        return cls(struct.unpack(">I", data)[0])

    def __str__(self) -> str:
        return f"{self.microvolts} мкВ (0x{self.microvolts:x})"


@dataclass(frozen=True)
class PatchPlan:
    node_path: str
    prop_name: str
    old: VoltageValue
    new: VoltageValue


def _require_cell(match: Match) -> None:
    if len(match.prop.value) != 4:
        raise EncodingMismatchError(
            f"'{match.path}/{match.prop.name}' занимает {len(match.prop.value)} байт, нужна одна ячейка (4 байта)"
        )


def plan(blob: Blob, prop_name: str, target: VoltageValue, node_path: Optional[str] = None) -> PatchPlan:
    """Найти свойство и зафиксировать старое/новое значение."""
    match = resolve(blob.root, prop_name, node_path)
    _require_cell(match)
    return PatchPlan(match.path, prop_name, VoltageValue.from_cell(match.prop.value), target)


def apply(blob: Blob, node_path: str, prop_name: str, new_value: VoltageValue) -> Blob:
    """Переписать байты свойства на месте. Новые свойства не создаются."""
    match = resolve(blob.root, prop_name, node_path)
    _require_cell(match)
    match.prop.value = new_value.to_cell()
    return blob


def apply_plan(blob: Blob, patch: PatchPlan) -> Blob:
    return apply(blob, patch.node_path, patch.prop_name, patch.new)
