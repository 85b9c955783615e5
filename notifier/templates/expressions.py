"""Mini template language used by stored and bundled templates.

Supported syntax:

- ``{{path.to.value}}``: substitution; unknown or null values render as ``""``
- ``{{a.b || c}}``: first non-empty value of the alternatives
- ``{{#if cond}}...{{/if}}``: conditional block, nestable

Conditions are a bare path (truthiness) or ``(eq a b)`` / ``(gt a b)``.
Operands are quoted literals, or paths that fall back to the literal token
when they do not resolve. Source is tokenized, parsed into a node tree and
evaluated; stray ``{{/if}}`` and unclosed ``{{#if}}`` markers are dropped
while their content is kept, so no raw ``{{...}}`` reaches the output.
"""

import math
import re
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, List, Mapping, Optional, Tuple, Union

from .exceptions import TemplateSyntaxError

MAX_NESTING = 50

_TAG_RE = re.compile(r"\{\{(.*?)\}\}", re.DOTALL)
_PATH_RE = re.compile(r"^[A-Za-z0-9_.]+$")
_OPERAND_RE = re.compile(r'"([^"]*)"|\'([^\']*)\'|(\S+)')

_MISSING = object()


@dataclass(frozen=True)
class Text:
    value: str


@dataclass(frozen=True)
class Var:
    paths: Tuple[str, ...]


@dataclass(frozen=True)
class If:
    condition: str
    children: Tuple["Node", ...]


Node = Union[Text, Var, If]


@dataclass(frozen=True)
class _Token:
    kind: str  # text, var, if, endif, unknown
    value: str


def tokenize(source: str) -> List[_Token]:
    """Split template source into text and tag tokens."""
    tokens: List[_Token] = []
    position = 0
    for match in _TAG_RE.finditer(source):
        if match.start() > position:
            tokens.append(_Token("text", source[position : match.start()]))
        tokens.append(_classify(match.group(1).strip()))
        position = match.end()
    if position < len(source):
        tokens.append(_Token("text", source[position:]))
    return tokens


def _classify(inner: str) -> _Token:
    if inner.startswith("#if ") or inner.startswith("#if\t") or inner.startswith("#if\n"):
        return _Token("if", inner[3:].strip())
    if inner == "/if":
        return _Token("endif", inner)
    alternatives = [part.strip() for part in inner.split("||")]
    if alternatives and all(_PATH_RE.match(part) for part in alternatives):
        return _Token("var", "||".join(alternatives))
    return _Token("unknown", inner)


@lru_cache(maxsize=512)
def parse(source: str) -> Tuple[Node, ...]:
    """Parse template source into an immutable node tree.

    Raises:
        TemplateSyntaxError: If conditional blocks nest deeper than MAX_NESTING
    """
    # Each frame is (condition, children); the root frame has no condition
    stack: List[Tuple[Optional[str], List[Node]]] = [(None, [])]

    for token in tokenize(source):
        children = stack[-1][1]
        if token.kind == "text":
            children.append(Text(token.value))
        elif token.kind == "var":
            children.append(Var(tuple(token.value.split("||"))))
        elif token.kind == "if":
            if len(stack) > MAX_NESTING:
                raise TemplateSyntaxError(
                    f"Conditional blocks nested deeper than {MAX_NESTING} levels"
                )
            stack.append((token.value, []))
        elif token.kind == "endif":
            if len(stack) == 1:
                continue  # stray closing marker
            condition, block = stack.pop()
            stack[-1][1].append(If(condition, tuple(block)))
        # unknown tags render as nothing

    # Unclosed blocks: drop the marker, keep the content
    while len(stack) > 1:
        _, block = stack.pop()
        stack[-1][1].extend(block)

    return tuple(stack[0][1])


def render_string(source: Optional[str], data: Mapping[str, Any]) -> str:
    """Render template source against a data mapping."""
    if not source:
        return ""
    parts: List[str] = []
    _render_nodes(parse(source), data, parts)
    return "".join(parts)


def _render_nodes(nodes: Tuple[Node, ...], data: Mapping[str, Any], out: List[str]) -> None:
    for node in nodes:
        if isinstance(node, Text):
            out.append(node.value)
        elif isinstance(node, Var):
            out.append(_render_var(node, data))
        elif evaluate_condition(node.condition, data):
            _render_nodes(node.children, data, out)


def _render_var(node: Var, data: Mapping[str, Any]) -> str:
    for path in node.paths:
        value = resolve_path(data, path)
        if value is _MISSING or value is None:
            continue
        rendered = to_display_string(value)
        if rendered or len(node.paths) == 1:
            return rendered
    return ""


def resolve_path(data: Any, path: str) -> Any:
    """Follow a dotted path through mappings and sequences.

    Returns the module sentinel ``_MISSING`` when any segment is absent.
    """
    if not path:
        return _MISSING
    current = data
    for key in path.split("."):
        if isinstance(current, Mapping):
            if key not in current:
                return _MISSING
            current = current[key]
        elif isinstance(current, (list, tuple)) and key.isdigit():
            index = int(key)
            if index >= len(current):
                return _MISSING
            current = current[index]
        else:
            return _MISSING
    return current


def evaluate_condition(expression: str, data: Mapping[str, Any]) -> bool:
    """Evaluate an ``{{#if}}`` condition."""
    expression = expression.strip()
    if expression.startswith("(") and expression.endswith(")"):
        operands = _split_operands(expression[1:-1].strip())
        if len(operands) != 3:
            return False
        operator, left_token, right_token = operands
        left = _operand_value(left_token, data)
        right = _operand_value(right_token, data)
        if operator[1] == "eq":
            return to_display_string(left) == to_display_string(right)
        if operator[1] == "gt":
            left_number = _to_number(left)
            right_number = _to_number(right)
            if left_number is None or right_number is None:
                return False
            return left_number > right_number
        return False

    value = resolve_path(data, expression)
    if value is _MISSING or value is None:
        return False
    if isinstance(value, (list, tuple)):
        return len(value) > 0
    if isinstance(value, str):
        return bool(value.strip())
    if isinstance(value, Mapping):
        return True
    return bool(value)


def _split_operands(expression: str) -> List[Tuple[bool, str]]:
    """Split into (quoted, text) pairs."""
    operands = []
    for match in _OPERAND_RE.finditer(expression):
        if match.group(1) is not None:
            operands.append((True, match.group(1)))
        elif match.group(2) is not None:
            operands.append((True, match.group(2)))
        else:
            operands.append((False, match.group(3)))
    return operands


def _operand_value(operand: Tuple[bool, str], data: Mapping[str, Any]) -> Any:
    quoted, text = operand
    if quoted:
        return text
    value = resolve_path(data, text)
    if value is _MISSING or value is None:
        return text
    return value


def _to_number(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return float(value)
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            return 0.0
        try:
            number = float(stripped)
        except ValueError:
            return None
    else:
        return None
    return None if math.isnan(number) else number


def to_display_string(value: Any) -> str:
    """Stringify a value for output and equality checks."""
    if value is None or value is _MISSING:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (list, tuple)):
        return ",".join(to_display_string(item) for item in value)
    return str(value)
