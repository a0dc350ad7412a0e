# errors.py
"""Ошибки инструмента. У каждой свой код выхода CLI."""


class DtbToolError(Exception):
    exit_code = 1


class FormatError(DtbToolError):
    """Битый или неподдерживаемый DTB."""
    exit_code = 10


class EncodingMismatchError(DtbToolError):
    """Свойство не является одной 32-битной ячейкой."""
    exit_code = 11


class OverVoltageError(DtbToolError):
    """Нарушено условие безопасности по напряжению."""
    exit_code = 12


class NotFoundError(DtbToolError):
    exit_code = 13


class AmbiguousMatchError(DtbToolError):
    """Свойство найдено в нескольких узлах, нужен --node-path."""
    exit_code = 14

    def __init__(self, name: str, paths: list[str]):
        self.name = name
        self.paths = paths
        super().__init__(f"Свойство '{name}' найдено в нескольких узлах: {', '.join(paths)}. Укажи --node-path.")


class OutputLockedError(DtbToolError):
    exit_code = 16


IO_EXIT_CODE = 15
RECONCILE_EXIT_CODE = 20
