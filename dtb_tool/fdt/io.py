# fdt/io.py
"""
Файловая часть: чтение образа, запись через временный файл + os.replace,
эксклюзивная блокировка выходного пути (flock на <out>.lock).
"""
from __future__ import annotations

import fcntl
import os
import shutil
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

from ..errors import OutputLockedError
from .blob import Blob, decode


def read_blob(path: Path) -> Blob:
    return decode(Path(path).read_bytes())


def write_atomic(path: Path, data: bytes) -> None:
    """Записать целиком или не записать вовсе: прерывание не оставит половину файла."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp, path)
    except BaseException:
        if os.path.exists(tmp):
            os.unlink(tmp)
        raise


def backup_file(src: Path, dst: Path) -> Path:
    dst = Path(dst)
    dst.parent.mkdir(parents=True, exist_ok=True)
    shutil.copy2(src, dst)
    return dst


def lock_path(path: Path) -> Path:
    path = Path(path)
    return path.with_name(path.name + ".lock")


@contextmanager
def exclusive_lock(path: Path) -> Iterator[Path]:
    """Не даём двум запускам одновременно писать один и тот же образ."""
    lp = lock_path(path)
    lp.parent.mkdir(parents=True, exist_ok=True)
    with open(lp, "a") as f:
        try:
            fcntl.flock(f.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError:
            raise OutputLockedError(f"{path} уже обрабатывается другим процессом ({lp})") from None
        try:
            yield lp
        finally:
            fcntl.flock(f.fileno(), fcntl.LOCK_UN)
