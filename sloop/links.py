"""External links built from small text templates.

Templates use the ``{{.Field}}`` action syntax with pipes, for example
``http://host/{{.Namespace | ToUpper}}``. The functions ToUpper and ToLower
are available.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple, Union


class TemplateError(ValueError):
    """Raised when a link template cannot be parsed or executed."""


@dataclass(frozen=True)
class LinkTemplate:
    """A link whose URL is rendered from a template."""

    text: str = ""
    url_template: str = ""


@dataclass(frozen=True)
class ResourceLinkTemplate:
    """A link shown for resources of the listed kinds (all kinds if empty)."""

    text: str = ""
    url_template: str = ""
    kinds: Sequence[str] = field(default_factory=list)


@dataclass(frozen=True)
class ComputedLink:
    """A link ready to display."""

    text: str
    url: str


_FUNCS: Dict[str, Callable[[str], str]] = {"ToUpper": str.upper, "ToLower": str.lower}
_LEXEME = re.compile(r'"(?:[^"\\]|\\.)*"|\||[^\s|]+')

_Operand = Tuple[str, Union[str, List[str]]]
_Command = Tuple[Optional[Callable[[str], str]], List[_Operand]]


def _parse_operand(piece: str) -> _Operand:
    if piece.startswith('"'):
        try:
            return ("literal", json.loads(piece))
        except ValueError as exc:
            raise TemplateError(f"bad string literal {piece}") from exc
    if piece.startswith("."):
        if piece == ".":
            return ("field", [])
        parts = piece[1:].split(".")
        if any(not part for part in parts):
            raise TemplateError(f"bad field reference {piece}")
        return ("field", parts)
    raise TemplateError(f'function "{piece}" not defined')


def _parse_pipeline(body: str) -> List[_Command]:
    commands: List[List[str]] = [[]]
    for piece in _LEXEME.findall(body):
        if piece == "|":
            commands.append([])
        else:
            commands[-1].append(piece)
    parsed: List[_Command] = []
    for index, pieces in enumerate(commands):
        if not pieces:
            raise TemplateError("missing value for command")
        head, args = pieces[0], pieces[1:]
        if head in _FUNCS:
            parsed.append((_FUNCS[head], [_parse_operand(arg) for arg in args]))
        else:
            if args or index > 0:
                raise TemplateError(f"can't give argument to non-function {head}")
            parsed.append((None, [_parse_operand(head)]))
    return parsed


def _parse(template: str) -> List[Union[str, List[_Command]]]:
    segments: List[Union[str, List[_Command]]] = []
    pos = 0
    trim_next = False
    while True:
        start = template.find("{{", pos)
        text = template[pos:] if start < 0 else template[pos:start]
        if trim_next:
            text = text.lstrip()
        if start < 0:
            segments.append(text)
            return segments
        end = template.find("}}", start + 2)
        if end < 0:
            raise TemplateError("unclosed action")
        body = template[start + 2:end]
        if len(body) >= 2 and body[0] == "-" and body[1].isspace():
            text = text.rstrip()
            body = body[2:]
        trim_next = len(body) >= 2 and body[-1] == "-" and body[-2].isspace()
        if trim_next:
            body = body[:-2]
        segments.append(text)
        body = body.strip()
        if body.startswith("/*"):
            if not body.endswith("*/"):
                raise TemplateError("unclosed comment")
        else:
            segments.append(_parse_pipeline(body))
        pos = end + 2


def _lookup(data: Any, name: str) -> Any:
    if isinstance(data, Mapping):
        if name in data:
            return data[name]
    elif hasattr(data, name):
        return getattr(data, name)
    raise TemplateError(f"can't evaluate field {name}")


def _evaluate(operand: _Operand, data: Any) -> Any:
    kind, payload = operand
    if kind == "literal":
        return payload
    value = data
    for name in payload:
        value = _lookup(value, name)
    return value


def _execute(commands: List[_Command], data: Any) -> Any:
    value: Any = None
    for index, (func, operands) in enumerate(commands):
        args = [_evaluate(operand, data) for operand in operands]
        if func is None:
            value = args[0]
            continue
        if index > 0:
            args.append(value)
        if len(args) != 1:
            raise TemplateError(f"wrong number of args: want 1 got {len(args)}")
        if not isinstance(args[0], str):
            raise TemplateError(f"wrong type for value; expected string; got {type(args[0]).__name__}")
        value = func(args[0])
    return value


def run_text_template(template: str, data: Any) -> str:
    """Render ``template`` against ``data`` (a mapping or an object)."""
    parts = []
    for segment in _parse(template):
        if isinstance(segment, str):
            parts.append(segment)
        else:
            parts.append(str(_execute(segment, data)))
    return "".join(parts)


def make_resource_links(
    namespace: str, name: str, kind: str, res_links: Sequence[ResourceLinkTemplate]
) -> List[ComputedLink]:
    """Render the resource links that apply to ``kind``; links without text are skipped."""
    data = {"Name": name, "Namespace": namespace, "Kind": kind}
    links = []
    for link in res_links:
        if link.text == "":
            continue
        url = run_text_template(link.url_template, data)
        if not link.kinds or kind in link.kinds:
            links.append(ComputedLink(text=link.text, url=url))
    return links


def make_left_bar_links(lb_links: Sequence[LinkTemplate]) -> List[ComputedLink]:
    """Render the left bar links; links without text are skipped."""
    return [
        ComputedLink(text=link.text, url=run_text_template(link.url_template, {}))
        for link in lb_links
        if link.text != ""
    ]