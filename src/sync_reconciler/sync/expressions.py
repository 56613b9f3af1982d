"""Expression and script evaluation seams.

The engine never interprets user expressions itself; it goes through an
``ExpressionEvaluator`` (mapping source lookups, rule and synchronization
conditions) and a ``ScriptEvaluator`` (``script``/``javascript`` rules).

``JsonLogicEvaluator`` is the default expression evaluator.  It covers the
subset of JsonLogic used by synchronization configs:

* a **string** is a dotted-path lookup into the context; a string
  containing ``{{ ... }}`` is rendered as a template instead;
* a **dict** with a single operator key is a JsonLogic operation;
* anything else is returned as a literal.

Missing variables evaluate to ``None`` (or the ``var`` default), never to
an error.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable
from typing import Any, Protocol

from sync_reconciler.sync.paths import get_path, has_path

logger = logging.getLogger(__name__)

_TEMPLATE_RE = re.compile(r"\{\{\s*([^{}]+?)\s*\}\}")


class ExpressionEvaluator(Protocol):
    def evaluate(self, expression: Any, context: Any) -> Any: ...


class ScriptEvaluator(Protocol):
    """Runs a user script against a context and returns the new context."""

    def run(self, script: str, context: dict[str, Any]) -> dict[str, Any]: ...


def _truthy(value: Any) -> bool:
    # JsonLogic truthiness: empty lists are false, "0" is true.
    if isinstance(value, list):
        return len(value) > 0
    return bool(value)


def _loose_equals(left: Any, right: Any) -> bool:
    if left == right:
        return True
    if isinstance(left, (int, float)) and isinstance(right, str):
        left, right = right, left
    if isinstance(left, str) and isinstance(right, (int, float)):
        try:
            return float(left) == float(right)
        except ValueError:
            return False
    return False


def _compare(op: Callable[[Any, Any], bool]) -> Callable[[list], bool]:
    def handler(args: list) -> bool:
        if len(args) < 2:
            return False
        try:
            return all(op(a, b) for a, b in zip(args, args[1:]))
        except TypeError:
            return False

    return handler


class JsonLogicEvaluator:
    """Default ``ExpressionEvaluator`` implementation."""

    def __init__(self) -> None:
        self._operations: dict[str, Callable[[list], Any]] = {
            "==": lambda a: _loose_equals(_arg(a, 0), _arg(a, 1)),
            "!=": lambda a: not _loose_equals(_arg(a, 0), _arg(a, 1)),
            "===": lambda a: _arg(a, 0) == _arg(a, 1),
            "!==": lambda a: _arg(a, 0) != _arg(a, 1),
            "!": lambda a: not _truthy(_arg(a, 0)),
            "!!": lambda a: _truthy(_arg(a, 0)),
            "<": _compare(lambda x, y: x < y),
            "<=": _compare(lambda x, y: x <= y),
            ">": _compare(lambda x, y: x > y),
            ">=": _compare(lambda x, y: x >= y),
            "in": lambda a: _contains(_arg(a, 1), _arg(a, 0)),
            "cat": lambda a: "".join("" if x is None else str(x) for x in a),
        }

    def evaluate(self, expression: Any, context: Any) -> Any:
        if isinstance(expression, str):
            return self._lookup(expression, context)
        if isinstance(expression, list):
            return [self.evaluate(item, context) for item in expression]
        if not isinstance(expression, dict) or len(expression) != 1:
            return expression

        op, raw_args = next(iter(expression.items()))
        args = raw_args if isinstance(raw_args, list) else [raw_args]

        # Operators that control evaluation of their own arguments.
        if op == "var":
            return self._var(args, context)
        if op == "missing":
            return [
                path for path in args
                if not has_path(context, str(path))
                or get_path(context, str(path)) in (None, "")
            ]
        if op == "and":
            result: Any = True
            for arg in args:
                result = self._operand(arg, context)
                if not _truthy(result):
                    return result
            return result
        if op == "or":
            result = False
            for arg in args:
                result = self._operand(arg, context)
                if _truthy(result):
                    return result
            return result
        if op == "if":
            for i in range(0, len(args) - 1, 2):
                if _truthy(self._operand(args[i], context)):
                    return self._operand(args[i + 1], context)
            if len(args) % 2 == 1:
                return self._operand(args[-1], context)
            return None

        handler = self._operations.get(op)
        if handler is None:
            # A dict that is not an operation is a literal object.
            return expression
        values = [self._operand(arg, context) for arg in args]
        return handler(values)

    def _operand(self, arg: Any, context: Any) -> Any:
        # Bare strings are literals inside operations; use {"var": ...}
        # to reference the context.
        if isinstance(arg, str):
            return arg
        return self.evaluate(arg, context)

    def _var(self, args: list, context: Any) -> Any:
        path = _arg(args, 0)
        default = _arg(args, 1)
        if path in (None, ""):
            return context
        return get_path(context, str(path), default)

    def _lookup(self, expression: str, context: Any) -> Any:
        if "{{" not in expression:
            return get_path(context, expression)
        whole = _TEMPLATE_RE.fullmatch(expression.strip())
        if whole:
            return get_path(context, whole.group(1))

        def _render(match: re.Match) -> str:
            value = get_path(context, match.group(1))
            return "" if value is None else str(value)

        return _TEMPLATE_RE.sub(_render, expression)


def _arg(args: list, index: int) -> Any:
    return args[index] if index < len(args) else None


def _contains(container: Any, item: Any) -> bool:
    if isinstance(container, str):
        return isinstance(item, str) and item in container
    if isinstance(container, list):
        return item in container
    return False


def check_condition(
    evaluator: ExpressionEvaluator, conditions: Any, context: Any
) -> bool:
    """Evaluate a condition; empty conditions always pass."""
    if conditions in (None, {}, [], ""):
        return True
    return _truthy(evaluator.evaluate(conditions, context))
