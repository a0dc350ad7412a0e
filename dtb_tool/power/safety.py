# power/safety.py
from __future__ import annotations
from dataclasses import dataclass

from .. import config
from ..errors import OverVoltageError
from ..fdt.patcher import VoltageValue


@dataclass(frozen=True)
class SafetyGate:
    """
    Проверка перед записью нового потолка напряжения:
    - цель не ниже минимально безопасного значения и не выше абсолютного максимума;
    - батарея сейчас не выше цели, иначе контроллер заряда запутается.
    """
    minimum: VoltageValue = VoltageValue(config.MIN_SAFE_MICROVOLT)
    maximum: VoltageValue = VoltageValue(config.ABS_MAX_MICROVOLT)

    def __post_init__(self):
        if self.minimum > self.maximum:
            raise ValueError(f"минимум {self.minimum} больше максимума {self.maximum}")

    def check(self, current: VoltageValue, target: VoltageValue) -> None:
        if target < self.minimum:
            raise OverVoltageError(
                f"Цель {target} ниже безопасного минимума {self.minimum}."
            )
        if target > self.maximum:
            raise OverVoltageError(
                f"Цель {target} выше абсолютного максимума {self.maximum}."
            )
        if current > target:
            raise OverVoltageError(
                f"Батарея сейчас {current}, это выше цели {target}. "
                "Дождись разряда ниже цели или выбери промежуточное значение."
            )
