# fdt/blob.py
"""Чтение и запись flattened device tree (DTB).

Формат (всё big-endian):

* заголовок 40 байт (версия 17);
* таблица резервирования памяти: пары u64 (адрес, размер), конец — (0, 0);
* структурный блок: токены FDT_BEGIN_NODE / FDT_PROP / FDT_END_NODE / FDT_NOP
  и завершающий FDT_END, данные выровнены на 4 байта;
* таблица строк: имена свойств, каждое заканчивается NUL.

Декодер сохраняет всё, что нужно для побайтового повторения исходника:
исходную таблицу строк (вместе с неиспользуемыми именами), смещения имён,
токены FDT_NOP, порядок блоков и промежутки между ними. Поэтому
encode(decode(b)) == b для неизменённого дерева, а изменённое свойство
меняет в выходном файле только свои байты.

Содержимое свойств никак не интерпретируется при декодировании — кодировка
(строка, ячейки, сырые байты) лишь угадывается для отображения.
"""

from __future__ import annotations

import struct
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Tuple

from ..errors import FormatError

FDT_MAGIC = 0xD00DFEED

FDT_BEGIN_NODE = 1
FDT_END_NODE = 2
FDT_PROP = 3
FDT_NOP = 4
FDT_END = 9

FDT_VERSION = 17
FDT_LAST_COMP_VERSION = 16
HEADER_SIZE = 40
RSV_ENTRY_SIZE = 16

# Имена блоков для Layout.order
RSVMAP = "rsvmap"
STRUCT = "struct"
STRINGS = "strings"


class Encoding(str, Enum):
    EMPTY = "empty"
    STRING = "string"
    CELLS = "cells"
    RAW = "raw"


def _align(size: int, to: int = 4) -> int:
    return (size + to - 1) & ~(to - 1)


def _looks_like_strings(value: bytes) -> bool:
    if not value or value[-1] != 0:
        return False
    parts = value[:-1].split(b"\x00")
    return all(p and all(32 <= c < 127 for c in p) for p in parts)


def guess_encoding(value: bytes) -> Encoding:
    if not value:
        return Encoding.EMPTY
    if _looks_like_strings(value):
        return Encoding.STRING
    if len(value) % 4 == 0:
        return Encoding.CELLS
    return Encoding.RAW


@dataclass
class Property:
    """Свойство узла: имя и сырые байты."""

    name: str
    value: bytes = b""
    nops_before: int = 0  # FDT_NOP непосредственно перед токеном
    name_offset: Optional[int] = None  # смещение имени в исходной таблице строк

    @property
    def encoding(self) -> Encoding:
        return guess_encoding(self.value)

    def as_cells(self) -> List[int]:
        if len(self.value) % 4:
            raise ValueError(f"длина {len(self.value)} не кратна 4")
        return list(struct.unpack(f">{len(self.value) // 4}I", self.value))

    def as_u32(self) -> int:
        if len(self.value) != 4:
            raise ValueError(f"ожидалась одна ячейка, длина {len(self.value)}")
        return struct.unpack(">I", self.value)[0]

    def as_strings(self) -> List[str]:
        return [s.decode("ascii") for s in self.value[:-1].split(b"\x00")]

    def describe(self) -> str:
        """Значение в стиле dts: "строка", <0x...>, [aa bb] или пусто."""
        enc = self.encoding
        if enc is Encoding.EMPTY:
            return ""
        if enc is Encoding.STRING:
            return ", ".join(f'"{s}"' for s in self.as_strings())
        if enc is Encoding.CELLS:
            return "<" + " ".join(f"0x{c:x}" for c in self.as_cells()) + ">"
        return "[" + " ".join(f"{b:02x}" for b in self.value) + "]"

    @staticmethod
    def from_u32(name: str, *cells: int) -> "Property":
        return Property(name, struct.pack(f">{len(cells)}I", *cells))

    @staticmethod
    def from_string(name: str, text: str) -> "Property":
        return Property(name, text.encode("ascii") + b"\x00")


@dataclass
class Node:
    """Узел дерева. Свойства уникальны по имени и идут раньше подузлов."""

    name: str
    properties: Dict[str, Property] = field(default_factory=dict)
    children: List["Node"] = field(default_factory=list)
    nops_before: int = 0
    nops_before_end: int = 0

    def add_property(self, prop: Property) -> "Node":
        self.properties[prop.name] = prop
        return self

    def add_child(self, child: "Node") -> "Node":
        self.children.append(child)
        return self

    def child(self, name: str) -> Optional["Node"]:
        for c in self.children:
            if c.name == name:
                return c
        return None


@dataclass
class Layout:
    """Физическое расположение блоков в исходном файле."""

    order: Tuple[str, ...] = (RSVMAP, STRUCT, STRINGS)
    gaps: Dict[str, bytes] = field(default_factory=dict)  # байты перед каждым блоком
    tail: bytes = b""  # хвост после последнего блока до totalsize


@dataclass
class Blob:
    root: Node
    reserved: List[Tuple[int, int]] = field(default_factory=list)
    version: int = FDT_VERSION
    last_comp_version: int = FDT_LAST_COMP_VERSION
    boot_cpuid_phys: int = 0
    strings: bytes = b""
    nops_before_end: int = 0
    layout: Layout = field(default_factory=Layout)


# ---------- Декодирование ----------

def _string_at(strings: bytes, offset: int) -> str:
    if offset >= len(strings):
        raise FormatError(f"смещение имени {offset} за пределами таблицы строк ({len(strings)} байт)")
    end = strings.find(b"\x00", offset)
    if end == -1:
        raise FormatError(f"имя по смещению {offset} не завершено NUL")
    try:
        return strings[offset:end].decode("ascii")
    except UnicodeDecodeError:
        raise FormatError(f"имя по смещению {offset} не ASCII") from None


def _read_rsvmap(data: bytes, offset: int) -> Tuple[List[Tuple[int, int]], int]:
    entries = []
    while True:
        if offset + RSV_ENTRY_SIZE > len(data):
            raise FormatError("таблица резервирования памяти не завершена")
        address, size = struct.unpack_from(">QQ", data, offset)
        offset += RSV_ENTRY_SIZE
        if address == 0 and size == 0:
            return entries, offset
        entries.append((address, size))


def _read_struct(block: bytes, strings: bytes) -> Tuple[Node, int]:
    stack: List[Node] = []
    root: Optional[Node] = None
    nops = 0
    off = 0
    while True:
        if off + 4 > len(block):
            raise FormatError("структурный блок закончился без FDT_END")
        token = struct.unpack_from(">I", block, off)[0]
        off += 4

        if token == FDT_NOP:
            nops += 1
        elif token == FDT_BEGIN_NODE:
            end = block.find(b"\x00", off)
            if end == -1:
                raise FormatError(f"имя узла по смещению {off} не завершено NUL")
            try:
                name = block[off:end].decode("ascii")
            except UnicodeDecodeError:
                raise FormatError(f"имя узла по смещению {off} не ASCII") from None
            off = _align(end + 1)
            node = Node(name, nops_before=nops)
            nops = 0
            if stack:
                stack[-1].children.append(node)
            elif root is not None:
                raise FormatError("второй корневой узел")
            else:
                root = node
            stack.append(node)
        elif token == FDT_END_NODE:
            if not stack:
                raise FormatError(f"лишний FDT_END_NODE по смещению {off - 4}")
            stack.pop().nops_before_end = nops
            nops = 0
        elif token == FDT_PROP:
            if not stack:
                raise FormatError(f"свойство вне узла по смещению {off - 4}")
            if off + 8 > len(block):
                raise FormatError("обрезанный заголовок свойства")
            length, name_off = struct.unpack_from(">II", block, off)
            off += 8
            if off + length > len(block):
                raise FormatError(f"данные свойства выходят за структурный блок (длина {length})")
            value = bytes(block[off:off + length])
            off = _align(off + length)
            name = _string_at(strings, name_off)
            node = stack[-1]
            if node.children:
                raise FormatError(f"свойство '{name}' после подузла в '{node.name}'")
            if name in node.properties:
                raise FormatError(f"повтор свойства '{name}' в '{node.name}'")
            node.properties[name] = Property(name, value, nops_before=nops, name_offset=name_off)
            nops = 0
        elif token == FDT_END:
            if stack or root is None:
                raise FormatError("несбалансированные FDT_BEGIN_NODE/FDT_END_NODE")
            if off != len(block):
                raise FormatError("данные после FDT_END в структурном блоке")
            return root, nops
        else:
            raise FormatError(f"неизвестный токен 0x{token:08x} по смещению {off - 4}")


def decode(data: bytes) -> Blob:
    """Разобрать DTB. FormatError при любом нарушении структуры."""
    if len(data) < HEADER_SIZE:
        raise FormatError(f"файл короче заголовка ({len(data)} < {HEADER_SIZE})")
    (magic, totalsize, off_struct, off_strings, off_rsv, version,
     last_comp, boot_cpuid, size_strings, size_struct) = struct.unpack_from(">10I", data, 0)

    if magic != FDT_MAGIC:
        raise FormatError(f"неверная сигнатура 0x{magic:08x}")
    if version < FDT_VERSION or last_comp > FDT_VERSION:
        raise FormatError(f"неподдерживаемая версия {version} (совместима с {last_comp})")
    if totalsize < HEADER_SIZE or totalsize > len(data):
        raise FormatError(f"totalsize {totalsize} не соответствует размеру файла {len(data)}")
    data = bytes(data[:totalsize])

    for name, start, size in ((STRUCT, off_struct, size_struct), (STRINGS, off_strings, size_strings)):
        if start < HEADER_SIZE or start + size > totalsize:
            raise FormatError(f"блок {name} [{start}, {start + size}) за пределами файла")
    if off_rsv < HEADER_SIZE or off_rsv % 8:
        raise FormatError(f"некорректное смещение таблицы резервирования {off_rsv}")
    if off_struct % 4:
        raise FormatError(f"структурный блок не выровнен: {off_struct}")

    reserved, rsv_end = _read_rsvmap(data, off_rsv)
    strings = data[off_strings:off_strings + size_strings]
    root, nops_end = _read_struct(data[off_struct:off_struct + size_struct], strings)

    regions = sorted([
        (off_rsv, rsv_end, RSVMAP),
        (off_struct, off_struct + size_struct, STRUCT),
        (off_strings, off_strings + size_strings, STRINGS),
    ])
    pos = HEADER_SIZE
    gaps = {}
    for start, end, name in regions:
        if start < pos:
            raise FormatError(f"блок {name} перекрывается с предыдущим")
        gaps[name] = data[pos:start]
        pos = end
    layout = Layout(order=tuple(r[2] for r in regions), gaps=gaps, tail=data[pos:])

    return Blob(
        root=root,
        reserved=reserved,
        version=version,
        last_comp_version=last_comp,
        boot_cpuid_phys=boot_cpuid,
        strings=strings,
        nops_before_end=nops_end,
        layout=layout,
    )


# ---------- Кодирование ----------

def _name_offset(strings: bytearray, prop: Property) -> int:
    if prop.name_offset is not None and prop.name_offset < len(strings):
        end = strings.find(b"\x00", prop.name_offset)
        if end != -1 and strings[prop.name_offset:end] == prop.name.encode("ascii"):
            return prop.name_offset
    needle = prop.name.encode("ascii") + b"\x00"
    idx = strings.find(needle)
    if idx == -1:
        idx = len(strings)
        strings.extend(needle)
    return idx


def _nops(count: int) -> bytes:
    return struct.pack(">I", FDT_NOP) * count


def _write_node(node: Node, out: bytearray, strings: bytearray):
    out += _nops(node.nops_before)
    out += struct.pack(">I", FDT_BEGIN_NODE)
    name = node.name.encode("ascii") + b"\x00"
    out += name.ljust(_align(len(name)), b"\x00")
    for prop in node.properties.values():
        out += _nops(prop.nops_before)
        out += struct.pack(">III", FDT_PROP, len(prop.value), _name_offset(strings, prop))
        out += prop.value.ljust(_align(len(prop.value)), b"\x00")
    for child in node.children:
        _write_node(child, out, strings)
    out += _nops(node.nops_before_end)
    out += struct.pack(">I", FDT_END_NODE)


def encode(blob: Blob) -> bytes:
    """Собрать DTB. Для неизменённого дерева результат совпадает с исходником."""
    strings = bytearray(blob.strings)
    struct_block = bytearray()
    _write_node(blob.root, struct_block, strings)
    struct_block += _nops(blob.nops_before_end)
    struct_block += struct.pack(">I", FDT_END)

    rsvmap = b"".join(struct.pack(">QQ", a, s) for a, s in blob.reserved) + bytes(RSV_ENTRY_SIZE)
    blocks = {RSVMAP: rsvmap, STRUCT: bytes(struct_block), STRINGS: bytes(strings)}
    alignment = {RSVMAP: 8, STRUCT: 4, STRINGS: 1}

    out = bytearray(HEADER_SIZE)
    offsets = {}
    for name in blob.layout.order:
        out += blob.layout.gaps.get(name, b"")
        out += bytes(_align(len(out), alignment[name]) - len(out))
        offsets[name] = len(out)
        out += blocks[name]
    out += blob.layout.tail

    struct.pack_into(
        ">10I", out, 0,
        FDT_MAGIC,
        len(out),
        offsets[STRUCT],
        offsets[STRINGS],
        offsets[RSVMAP],
        blob.version,
        blob.last_comp_version,
        blob.boot_cpuid_phys,
        len(strings),
        len(struct_block),
    )
    return bytes(out)
