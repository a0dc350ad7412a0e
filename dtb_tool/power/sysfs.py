# power/sysfs.py
from __future__ import annotations
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from ..fdt.patcher import VoltageValue


# ---- Источник текущего напряжения ----
class VoltageSensor(Protocol):
    def read(self) -> VoltageValue: ...


@dataclass
class SysfsVoltageSensor:
    """voltage_now из power_supply: целое число микровольт."""
    path: Path

    def read(self) -> VoltageValue:
        raw = Path(self.path).read_text(encoding="ascii", errors="replace").strip()
        try:
            return VoltageValue(int(raw))
        except ValueError:
            # нечитаемый датчик = датчика нет, без проверки не патчим
            raise OSError(f"Некорректное значение напряжения в {self.path}: {raw!r}") from None


@dataclass
class StaticVoltageSensor:
    """Значение, введённое оператором вручную (--current-microvolts)."""
    value: VoltageValue

    def read(self) -> VoltageValue:
        return self.value


# ---- Управляемый атрибут ----
@dataclass
class SysfsAttribute:
    path: Path

    def read(self) -> str:
        return Path(self.path).read_text(encoding="ascii", errors="replace").strip()

    def write(self, value: str) -> None:
        # sysfs принимает значение одной записью
        with open(self.path, "w", encoding="ascii") as f:
            f.write(value + "\n")
