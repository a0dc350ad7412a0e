# power/schedule.py
"""
Запуск reconcile-once при каждой загрузке — загрузочный скрипт
(OpenRC local.d, rc.local и т.п.). Сам планировщик внешний, здесь только
установка и удаление файла.
"""
from __future__ import annotations

import shlex
import sys
from dataclasses import dataclass
from pathlib import Path

from .. import config
from ..fdt.io import write_atomic

MARKER = "# dtb-tool: charger reconcile"

# каталог, из которого импортируется dtb_tool (site-packages или рабочая копия)
PACKAGE_ROOT = Path(__file__).resolve().parents[2]

SCRIPT_TEMPLATE = """#!/bin/sh
{marker}
sleep {boot_delay}
cd {root} || exit 1
exec {python} -m dtb_tool.main reconcile-once --attribute {attribute} --delay-ms {delay_ms}
"""


@dataclass
class ReconcileSchedule:
    script: Path = config.DEFAULT_SCHEDULE_SCRIPT

    def render(self, attribute: Path, delay_ms: int, boot_delay_s: int) -> str:
        return SCRIPT_TEMPLATE.format(
            marker=MARKER,
            boot_delay=int(boot_delay_s),
            root=shlex.quote(str(PACKAGE_ROOT)),
            python=shlex.quote(sys.executable),
            attribute=shlex.quote(str(attribute)),
            delay_ms=int(delay_ms),
        )

    def is_installed(self) -> bool:
        try:
            return MARKER in Path(self.script).read_text(encoding="utf-8")
        except (FileNotFoundError, UnicodeDecodeError):
            return False

    def check_ownership(self) -> None:
        """FileExistsError, если по пути лежит чужой файл. Вызывать до любых записей."""
        script = Path(self.script)
        if script.exists() and not self.is_installed():
            raise FileExistsError(f"{script} существует и не создан dtb-tool")

    def install(self, attribute: Path = config.DEFAULT_CHARGER_ATTR,
                delay_ms: int = config.SETTLE_DELAY_MS,
                boot_delay_s: int = config.BOOT_DELAY_S) -> bool:
        """Идемпотентно: повторная установка перезаписывает тот же файл. True, если файл изменён."""
        self.check_ownership()
        script = Path(self.script)
        text = self.render(attribute, delay_ms, boot_delay_s)
        if script.exists() and script.read_text(encoding="utf-8") == text:
            return False
        write_atomic(script, text.encode("utf-8"))
        script.chmod(0o755)
        return True

    def remove(self) -> bool:
        """True, если скрипт был и удалён. Чужой файл не трогаем."""
        self.check_ownership()
        script = Path(self.script)
        if not script.exists():
            return False
        script.unlink()
        return True
