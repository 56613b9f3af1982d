"""Declarative field mapping for one object or a list of objects.

``MappingExecutor.apply()`` turns a source payload into a target payload:

1. **Seed** -- with ``pass_through`` the output starts as a deep copy of
   the input, otherwise as ``{}``.
2. **Assign** -- each ``target_path: source_expression`` pair is evaluated
   against the input and written into the output, creating intermediate
   objects as needed.
3. **Cast** -- the casts declared per target path run in order
   (see ``casts.py``).
4. **Unset** -- every ``unset`` path is removed last, so unset always wins
   over pass-through and mapping.
5. **Hash** -- the final output is hashed for change detection.

Keys containing literal dots survive the round trip: they are escaped
before path handling and restored afterwards.  An output consisting of a
single ``#`` key is unwrapped so a mapping can produce a root-level value.
"""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass, field
from typing import Any

from sync_reconciler.sync.casts import apply_cast, parse_casts
from sync_reconciler.sync.errors import MappingError
from sync_reconciler.sync.expressions import ExpressionEvaluator, JsonLogicEvaluator
from sync_reconciler.sync.models import Mapping
from sync_reconciler.sync.paths import DOT_ESCAPE, delete_path, encode_keys, set_path
from sync_reconciler.sync.state import content_hash

logger = logging.getLogger(__name__)

ROOT_KEY = "#"
LIST_INPUT_KEY = "listInput"


@dataclass(frozen=True)
class MappingOutcome:
    """Result of mapping one object.

    Attributes:
        output: The mapped payload.
        hash: Content hash of ``output``.
        errors: Soft cast failures that were recorded but did not fail the
            object.
    """

    output: Any
    hash: str
    errors: list[MappingError] = field(default_factory=list)


@dataclass(frozen=True)
class ListMappingOutcome:
    """Result of mapping a list: per-element outputs and per-element errors.

    Both dicts are keyed by the element's index (or key, for object input).
    ``results`` is the array of successful outputs in input order.
    """

    outputs: dict[Any, Any] = field(default_factory=dict)
    errors: dict[Any, MappingError] = field(default_factory=dict)

    @property
    def results(self) -> list[Any]:
        return list(self.outputs.values())

    @property
    def succeeded(self) -> int:
        return len(self.outputs)

    @property
    def failed(self) -> int:
        return len(self.errors)


class MappingExecutor:
    """Apply ``Mapping`` definitions to payloads.

    Args:
        evaluator: Resolves source expressions.  Defaults to
            ``JsonLogicEvaluator``.
    """

    def __init__(self, evaluator: ExpressionEvaluator | None = None) -> None:
        self.evaluator = evaluator or JsonLogicEvaluator()

    def apply(self, mapping: Mapping, data: Any) -> MappingOutcome:
        """Map one object.

        Raises:
            MappingError: If a target path cannot be assigned, or a cast
                outside ``mapping.soft_cast`` fails.
        """
        source = encode_keys(data if data is not None else {}, ".", DOT_ESCAPE)

        if mapping.pass_through and isinstance(source, dict):
            output: dict[str, Any] = copy.deepcopy(source)
        else:
            output = {}

        for target_path, expression in mapping.mapping.items():
            value = self.evaluator.evaluate(expression, source)
            try:
                set_path(output, target_path, copy.deepcopy(value))
            except ValueError as exc:
                raise MappingError(str(exc), path=target_path) from exc

        errors: list[MappingError] = []
        for path, declared in mapping.cast.items():
            for cast in parse_casts(declared):
                try:
                    apply_cast(output, path, cast)
                except MappingError as exc:
                    if path not in mapping.soft_cast:
                        raise
                    logger.debug(
                        "Soft cast failure in mapping %s: %s", mapping.id, exc
                    )
                    errors.append(exc)

        for path in mapping.unset:
            if not delete_path(output, path):
                logger.debug(
                    "Unset path '%s' not present in mapping %s output",
                    path,
                    mapping.id,
                )

        result: Any = encode_keys(output, DOT_ESCAPE, ".")
        if isinstance(result, dict) and list(result) == [ROOT_KEY]:
            result = result[ROOT_KEY]

        return MappingOutcome(
            output=result, hash=content_hash(result), errors=errors
        )

    def apply_list(self, mapping: Mapping, data: Any) -> ListMappingOutcome:
        """Map every element of a list independently.

        *data* is a list, an object of elements, or an object holding the
        elements under ``listInput`` together with extra values that are
        merged into every element.  A failing element is recorded in
        ``errors`` and does not affect its siblings.
        """
        extras: dict[str, Any] = {}
        if isinstance(data, dict) and LIST_INPUT_KEY in data:
            extras = {
                key: value
                for key, value in data.items()
                if key not in (LIST_INPUT_KEY, "value")
            }
            data = data[LIST_INPUT_KEY]

        if isinstance(data, dict):
            items = list(data.items())
        else:
            items = list(enumerate(data or []))

        outputs: dict[Any, Any] = {}
        errors: dict[Any, MappingError] = {}
        for key, element in items:
            if not isinstance(element, dict) or extras:
                base = element if isinstance(element, dict) else {}
                element = {**base, "value": element, **extras}
            try:
                outputs[key] = self.apply(mapping, element).output
            except MappingError as exc:
                logger.info(
                    "Mapping %s failed for list element %s: %s",
                    mapping.id,
                    key,
                    exc,
                )
                errors[key] = exc

        return ListMappingOutcome(outputs=outputs, errors=errors)
