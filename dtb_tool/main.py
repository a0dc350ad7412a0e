from __future__ import annotations
from pathlib import Path

import typer
from rich import print
from rich.markup import escape
from rich.table import Table
from rich.tree import Tree

from . import config
from .errors import DtbToolError, NotFoundError, IO_EXIT_CODE, RECONCILE_EXIT_CODE
from .journal import log_event
from .fdt.blob import Node, encode, decode
from .fdt.io import read_blob, write_atomic, backup_file, exclusive_lock
from .fdt.locator import find as find_property, resolve
from .fdt.patcher import U32_MAX, VoltageValue, plan, apply_plan
from .power.safety import SafetyGate
from .power.sysfs import SysfsAttribute, SysfsVoltageSensor, StaticVoltageSensor
from .power.reconcile import ChargerReconciler
from .power.schedule import ReconcileSchedule

app = typer.Typer(add_completion=False, help="DTB: понижение потолка заряда батареи и переподключение зарядки.")


def _abort(kind: str, err: Exception) -> typer.Exit:
    """Сообщить об ошибке, записать в журнал и вернуть Exit с нужным кодом."""
    code = err.exit_code if isinstance(err, DtbToolError) else IO_EXIT_CODE
    print(f"[red]{type(err).__name__}:[/] {escape(str(err))}")
    log_event(kind, {"error": type(err).__name__, "message": str(err), "exit_code": code})
    return typer.Exit(code=code)


def _same_file(a: Path, b: Path) -> bool:
    return Path(a).resolve() == Path(b).resolve()


@app.command()
def patch(
    in_file: Path = typer.Option(..., "--in", help="Исходный DTB"),
    out_file: Path = typer.Option(..., "--out", help="Куда записать изменённый DTB"),
    prop: str = typer.Option(config.DEFAULT_PROPERTY, "--property", help="Имя свойства"),
    target: int = typer.Option(..., "--target-microvolts", min=0, max=U32_MAX, help="Новый потолок, мкВ"),
    node_path: str = typer.Option(None, "--node-path", help="Путь узла, если свойство встречается несколько раз"),
    current: int = typer.Option(None, "--current-microvolts", min=0, max=U32_MAX,
                                help="Текущее напряжение вручную (иначе читается датчик)"),
    sensor: Path = typer.Option(config.DEFAULT_VOLTAGE_SENSOR, "--voltage-sensor", help="Файл voltage_now"),
    minimum: int = typer.Option(config.MIN_SAFE_MICROVOLT, "--min-microvolts", min=0, max=U32_MAX),
    maximum: int = typer.Option(config.ABS_MAX_MICROVOLT, "--max-microvolts", min=0, max=U32_MAX),
    backup: Path = typer.Option(None, "--backup", help="Сохранить копию исходного DTB"),
    schedule_script: Path = typer.Option(None, "--schedule-script",
                                         help="Установить загрузочный скрипт reconcile-once"),
    attribute: Path = typer.Option(config.DEFAULT_CHARGER_ATTR, "--charger-attribute"),
    delay_ms: int = typer.Option(config.SETTLE_DELAY_MS, "--delay-ms", min=0),
    allow_in_place: bool = typer.Option(False, "--allow-in-place", help="Разрешить --out == --in"),
):
    """
    Понизить потолок напряжения в DTB. Проверка безопасности обязательна,
    при любой ошибке выходной файл не создаётся.
    """
    if _same_file(in_file, out_file) and not allow_in_place:
        print("[red]--out совпадает с --in.[/] Пиши в копию и устанавливай её отдельно (или --allow-in-place).")
        raise typer.Exit(code=2)
    if minimum > maximum:
        print("[red]--min-microvolts больше --max-microvolts.[/]")
        raise typer.Exit(code=2)

    try:
        blob = read_blob(in_file)
        wanted = VoltageValue(target)
        change = plan(blob, prop, wanted, node_path)

        reader = StaticVoltageSensor(VoltageValue(current)) if current is not None else SysfsVoltageSensor(sensor)
        now = reader.read()
        SafetyGate(VoltageValue(minimum), VoltageValue(maximum)).check(now, wanted)
        schedule = ReconcileSchedule(schedule_script) if schedule_script is not None else None
        if schedule is not None:
            schedule.check_ownership()

        data = encode(apply_plan(blob, change))
        # контрольное чтение того, что собираемся записать
        check = resolve(decode(data).root, prop, change.node_path)
        if VoltageValue.from_cell(check.prop.value) != wanted:
            raise DtbToolError("контрольное чтение не совпало с целью")

        with exclusive_lock(out_file):
            if backup is not None:
                backup_file(in_file, backup)
            write_atomic(out_file, data)
    except (DtbToolError, OSError) as e:
        raise _abort("patch_failed", e)

    # образ уже записан и корректен: сбой установки скрипта не фатален
    scheduled = None
    if schedule is not None:
        try:
            scheduled = schedule.install(attribute, delay_ms)
        except OSError as e:
            log_event("schedule_failed", {"script": str(schedule_script), "error": str(e)})
            print(f"[yellow]Скрипт не установлен:[/] {escape(str(e))}. Повтори: schedule-install --script ...")

    result = {
        "in": str(in_file),
        "out": str(out_file),
        "node": change.node_path,
        "property": prop,
        "old": change.old.microvolts,
        "new": change.new.microvolts,
        "current": now.microvolts,
        "bytes": len(data),
        "backup": str(backup) if backup else None,
        "schedule": str(schedule_script) if scheduled is not None else None,
    }
    log_event("patch", result)
    print(f"[green]Готово:[/] {escape(change.node_path)} {escape(prop)}: {change.old} -> {change.new}")
    print(f"Записано {len(data)} байт -> {escape(str(out_file))}")
    if scheduled is not None:
        state = "установлен" if scheduled else "уже установлен"
        print(f"Загрузочный скрипт {state}: {escape(str(schedule_script))}")
    elif schedule is None:
        print("[yellow]Не забудь запланировать reconcile-once после загрузки (--schedule-script).[/]")
    print(f"\n[dim]Логи записаны в: {config.LOG_FILE}[/]")


@app.command()
def revert(
    backup: Path = typer.Option(..., "--backup", help="Сохранённый исходный DTB"),
    target: Path = typer.Option(..., "--target", help="Куда восстановить"),
    schedule_script: Path = typer.Option(config.DEFAULT_SCHEDULE_SCRIPT, "--schedule-script"),
):
    """Вернуть исходный DTB и убрать загрузочный скрипт."""
    try:
        data = Path(backup).read_bytes()
        decode(data)  # не восстанавливаем мусор
        schedule = ReconcileSchedule(schedule_script)
        schedule.check_ownership()
        with exclusive_lock(target):
            write_atomic(target, data)
    except (DtbToolError, OSError) as e:
        raise _abort("revert_failed", e)

    # образ уже восстановлен: сбой удаления скрипта не фатален
    removed = False
    try:
        removed = schedule.remove()
    except OSError as e:
        log_event("schedule_failed", {"script": str(schedule_script), "error": str(e)})
        print(f"[yellow]Скрипт не удалён:[/] {escape(str(e))}. Повтори: schedule-remove --script ...")

    log_event("revert", {"backup": str(backup), "target": str(target), "schedule_removed": removed})
    print(f"[green]Восстановлено:[/] {escape(str(backup))} -> {escape(str(target))}")
    if removed:
        print(f"Загрузочный скрипт удалён: {escape(str(schedule_script))}")
    print(f"\n[dim]Логи записаны в: {config.LOG_FILE}[/]")


@app.command("reconcile-once")
def reconcile_once(
    attribute: Path = typer.Option(config.DEFAULT_CHARGER_ATTR, "--attribute", help="Атрибут включения зарядки"),
    delay_ms: int = typer.Option(config.SETTLE_DELAY_MS, "--delay-ms", min=0, help="Пауза между off и on"),
    on_value: str = typer.Option(config.CHARGER_ON, "--on-value"),
    off_value: str = typer.Option(config.CHARGER_OFF, "--off-value"),
):
    """Выключить и включить зарядку (запускается планировщиком после загрузки)."""
    reconciler = ChargerReconciler(SysfsAttribute(attribute), on_value=on_value, off_value=off_value)
    try:
        state = reconciler.reconcile(delay_ms)
    except OSError as e:
        print(f"[red]Не удалось переключить {escape(str(attribute))}:[/] {escape(str(e))}")
        raise typer.Exit(code=RECONCILE_EXIT_CODE)
    print(f"[green]Зарядка переподключена[/] ({escape(str(attribute))}): {state.value}")


@app.command("find")
def find_cmd(
    in_file: Path = typer.Option(..., "--in", help="DTB"),
    prop: str = typer.Option(config.DEFAULT_PROPERTY, "--property", help="Имя свойства"),
):
    """Показать все узлы, где есть свойство."""
    try:
        blob = read_blob(in_file)
    except (DtbToolError, OSError) as e:
        raise _abort("find_failed", e)

    matches = find_property(blob.root, prop)
    if not matches:
        print(f"[yellow]Свойство '{escape(prop)}' не найдено.[/]")
        raise typer.Exit(code=NotFoundError.exit_code)
    table = Table(title=prop)
    table.add_column("Узел", style="cyan")
    table.add_column("Кодировка")
    table.add_column("Значение")
    for m in matches:
        table.add_row(escape(m.path), m.prop.encoding.value, escape(m.prop.describe()))
    print(table)


def _add_branch(tree: Tree, node: Node):
    for p in node.properties.values():
        value = p.describe()
        tree.add(f"[green]{escape(p.name)}[/]" + (f" = {escape(value)}" if value else ""))
    for child in node.children:
        _add_branch(tree.add(f"[bold cyan]{escape(child.name)}[/]"), child)


@app.command()
def show(in_file: Path = typer.Option(..., "--in", help="DTB")):
    """Вывести дерево целиком."""
    try:
        blob = read_blob(in_file)
    except (DtbToolError, OSError) as e:
        raise _abort("show_failed", e)
    tree = Tree(f"[bold]/[/] (v{blob.version}, резерв: {len(blob.reserved)})")
    _add_branch(tree, blob.root)
    print(tree)


@app.command("schedule-install")
def schedule_install(
    script: Path = typer.Option(config.DEFAULT_SCHEDULE_SCRIPT, "--script"),
    attribute: Path = typer.Option(config.DEFAULT_CHARGER_ATTR, "--attribute"),
    delay_ms: int = typer.Option(config.SETTLE_DELAY_MS, "--delay-ms", min=0),
    boot_delay: int = typer.Option(config.BOOT_DELAY_S, "--boot-delay", min=0, help="Секунд после загрузки"),
):
    """Установить загрузочный скрипт reconcile-once."""
    try:
        changed = ReconcileSchedule(script).install(attribute, delay_ms, boot_delay)
    except OSError as e:
        raise _abort("schedule_failed", e)
    log_event("schedule_install", {"script": str(script), "changed": changed})
    print(f"[green]Скрипт {'установлен' if changed else 'уже актуален'}:[/] {escape(str(script))}")


@app.command("schedule-remove")
def schedule_remove(script: Path = typer.Option(config.DEFAULT_SCHEDULE_SCRIPT, "--script")):
    try:
        removed = ReconcileSchedule(script).remove()
    except OSError as e:
        raise _abort("schedule_failed", e)
    log_event("schedule_remove", {"script": str(script), "removed": removed})
    print(f"[green]Удалён:[/] {escape(str(script))}" if removed else "[yellow]Скрипта нет.[/]")


if __name__ == "__main__":
    app()
