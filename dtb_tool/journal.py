# journal.py
from __future__ import annotations
import json
from datetime import datetime, timezone

from rich import print
from rich.markup import escape

from . import config


def log_event(kind: str, payload: dict) -> bool:
    """
    Дописать событие в JSONL-журнал сессии (config.LOG_FILE).
    Недоступный журнал не меняет исход команды: только предупреждение, False.
    """
    log_file = config.LOG_FILE
    record = {
        "ts": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
        "kind": kind,
        "payload": payload,
    }
    try:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        with open(log_file, "a", encoding="utf-8") as f:
            f.write(json.dumps(record, ensure_ascii=False) + "\n")
    except OSError as e:
        print(f"[yellow]Журнал недоступен ({escape(str(log_file))}): {escape(str(e))}[/]")
        return False
    return True
