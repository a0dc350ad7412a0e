# power/reconcile.py
"""
Обход дефекта контроллера заряда: после смены потолка напряжения и
перезагрузки зарядка стоит, хотя батарея ниже нового потолка.
Выключаем и снова включаем атрибут питания — контроллер пересчитывает цель.

Причину простоя не выясняем: действие безусловное, один раз за загрузку.
"""
from __future__ import annotations

import time
from enum import Enum
from typing import Callable

from .. import config
from ..journal import log_event
from .sysfs import SysfsAttribute


class ChargerState(str, Enum):
    ENABLED = "enabled"
    DISABLED = "disabled"
    UNKNOWN = "unknown"


class ChargerReconciler:
    def __init__(self, attribute: SysfsAttribute,
                 on_value: str = config.CHARGER_ON,
                 off_value: str = config.CHARGER_OFF,
                 sleep: Callable[[float], None] = time.sleep):
        self.attribute = attribute
        self.on_value = on_value
        self.off_value = off_value
        self._sleep = sleep

    def state(self) -> ChargerState:
        try:
            raw = self.attribute.read()
        except OSError:
            return ChargerState.UNKNOWN
        if raw == self.on_value:
            return ChargerState.ENABLED
        if raw == self.off_value:
            return ChargerState.DISABLED
        return ChargerState.UNKNOWN

    def _set(self, value: str, step: str):
        try:
            self.attribute.write(value)
        except OSError as e:
            log_event("reconcile_failed", {"attribute": str(self.attribute.path), "step": step, "error": str(e)})
            raise

    def reconcile(self, delay_ms: int = config.SETTLE_DELAY_MS) -> ChargerState:
        """
        ENABLED -> DISABLED, пауза delay_ms, DISABLED -> ENABLED.
        Прерывание посередине оставит DISABLED — лечится повторным запуском.
        """
        if delay_ms < 0:
            raise ValueError("delay_ms не может быть отрицательной")
        before = self.state()
        self._set(self.off_value, "off")
        self._sleep(delay_ms / 1000)
        self._set(self.on_value, "on")
        log_event("reconcile", {
            "attribute": str(self.attribute.path),
            "before": before.value,
            "delay_ms": delay_ms,
        })
        return ChargerState.ENABLED
