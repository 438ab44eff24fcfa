"""
typegen/annotations.py - Render type annotations as Python source.

Turns the resolved annotation of a pydantic field into the text of an
equivalent ``typing`` expression. Models are named through a callback so the
emitter can declare them; anything unrecognised renders as ``Any``.
"""

from __future__ import annotations
from enum import Enum
from typing import Annotated, Any, Callable, Literal, Tuple, Union, get_args, get_origin
import collections.abc
import json
import types

from pydantic import BaseModel

ModelNamer = Callable[[type], str]

_PRIMITIVES = {
    str: "str",
    int: "int",
    float: "float",
    bool: "bool",
    bytes: "bytes",
}

_LIST_ORIGINS = (list, collections.abc.Sequence, collections.abc.MutableSequence, collections.abc.Iterable)
_SET_ORIGINS = (set, collections.abc.Set, collections.abc.MutableSet)
_DICT_ORIGINS = (dict, collections.abc.Mapping, collections.abc.MutableMapping)
UNION_ORIGINS = (Union, types.UnionType)

_BARE_CONTAINERS = {
    list: "List[Any]",
    set: "Set[Any]",
    frozenset: "FrozenSet[Any]",
    tuple: "Tuple[Any, ...]",
    dict: "Dict[str, Any]",
}


def quote(value: str) -> str:
    """Double-quoted Python string literal."""
    return json.dumps(value)


def literal_value(value: Any) -> str:
    if isinstance(value, Enum):
        value = value.value
    if isinstance(value, str):
        return quote(value)
    return repr(value)


def is_model(tp: Any) -> bool:
    return isinstance(tp, type) and issubclass(tp, BaseModel)


def strip_annotated(tp: Any) -> Any:
    while get_origin(tp) is Annotated:
        tp = get_args(tp)[0]
    return tp


def split_optional(tp: Any) -> Tuple[Any, bool]:
    """
    Separate ``None`` from a union.

    Returns the annotation without ``None`` and whether ``None`` was present.
    """
    tp = strip_annotated(tp)
    if get_origin(tp) not in UNION_ORIGINS:
        return tp, False
    members = [m for m in get_args(tp) if m is not type(None)]
    if len(members) == len(get_args(tp)):
        return tp, False
    if len(members) == 1:
        return members[0], True
    return Union[tuple(members)], True


def _render_args(args: Tuple[Any, ...], name_model: ModelNamer) -> str:
    return ", ".join(annotation_to_source(arg, name_model) for arg in args)


def annotation_to_source(tp: Any, name_model: ModelNamer) -> str:
    """Render an annotation as the source of a typing expression."""
    if tp is Any:
        return "Any"
    if tp is None or tp is type(None):
        return "None"
    if tp in _PRIMITIVES:
        return _PRIMITIVES[tp]
    if is_model(tp):
        return name_model(tp)
    if isinstance(tp, type) and issubclass(tp, Enum):
        return f"Literal[{', '.join(literal_value(member) for member in tp)}]"
    if tp in _BARE_CONTAINERS:
        return _BARE_CONTAINERS[tp]

    origin = get_origin(tp)
    args = get_args(tp)

    if origin is Annotated:
        return annotation_to_source(args[0], name_model)

    if origin is Literal:
        return f"Literal[{', '.join(literal_value(arg) for arg in args)}]"

    if origin in UNION_ORIGINS:
        inner, optional = split_optional(tp)
        if optional and get_origin(inner) not in UNION_ORIGINS:
            return f"Optional[{annotation_to_source(inner, name_model)}]"
        return f"Union[{_render_args(args, name_model)}]"

    if origin in _LIST_ORIGINS:
        item = annotation_to_source(args[0], name_model) if args else "Any"
        return f"List[{item}]"

    if origin is frozenset:
        item = annotation_to_source(args[0], name_model) if args else "Any"
        return f"FrozenSet[{item}]"

    if origin in _SET_ORIGINS:
        item = annotation_to_source(args[0], name_model) if args else "Any"
        return f"Set[{item}]"

    if origin is tuple:
        if not args:
            return "Tuple[Any, ...]"
        if args == ((),):
            return "Tuple[()]"
        if len(args) == 2 and args[1] is Ellipsis:
            return f"Tuple[{annotation_to_source(args[0], name_model)}, ...]"
        return f"Tuple[{_render_args(args, name_model)}]"

    if origin in _DICT_ORIGINS:
        if len(args) == 2:
            return f"Dict[{_render_args(args, name_model)}]"
        return "Dict[str, Any]"

    return "Any"
