# fdt/locator.py
from __future__ import annotations
from dataclasses import dataclass
from typing import Iterator, List, Optional, Tuple

from ..errors import AmbiguousMatchError, NotFoundError
from .blob import Node, Property


@dataclass(frozen=True)
class Match:
    path: str        # путь узла, корень = "/"
    node: Node
    prop: Property   # ссылка на объект в дереве, не копия


def _join(parent: str, name: str) -> str:
    return parent.rstrip("/") + "/" + name


def walk(root: Node) -> Iterator[Tuple[str, Node]]:
    """Обход в глубину, подузлы в порядке объявления."""
    stack = [("/", root)]
    while stack:
        path, node = stack.pop()
        yield path, node
        for child in reversed(node.children):
            stack.append((_join(path, child.name), child))


def find(root: Node, name: str) -> List[Match]:
    """Все вхождения свойства по точному имени. Пустой список — не ошибка."""
    return [Match(path, node, node.properties[name])
            for path, node in walk(root) if name in node.properties]


def normalize_path(path: str) -> str:
    parts = [p for p in path.split("/") if p]
    return "/" + "/".join(parts)


def get_node(root: Node, path: str) -> Node:
    node = root
    for part in normalize_path(path).split("/")[1:]:
        if not part:
            continue
        child = node.child(part)
        if child is None:
            raise NotFoundError(f"Узел '{normalize_path(path)}' не найден")
        node = child
    return node


def resolve(root: Node, name: str, node_path: Optional[str] = None) -> Match:
    """
    Одно вхождение свойства:
    - с node_path — строго в этом узле;
    - без него — единственное в дереве, иначе AmbiguousMatchError.
    """
    if node_path is not None:
        path = normalize_path(node_path)
        node = get_node(root, path)
        if name not in node.properties:
            raise NotFoundError(f"Свойство '{name}' отсутствует в узле '{path}'")
        return Match(path, node, node.properties[name])

    matches = find(root, name)
    if not matches:
        raise NotFoundError(f"Свойство '{name}' в дереве не найдено")
    if len(matches) > 1:
        raise AmbiguousMatchError(name, [m.path for m in matches])
    return matches[0]
