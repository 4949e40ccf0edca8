"""
Eager parsing of gesture arguments into explicit variants.

Every function here either returns a tagged value the dispatcher can act on or
raises ``InvalidActionArgument`` naming the error kind to report. Nothing here
waits or polls.
"""

import math
import re
from collections.abc import Mapping
from typing import Any, Dict, List, Optional, Sequence, Tuple

from stepengine.core.interfaces import KeySequenceParser, PageAdapter
from stepengine.core.types import (
    DragDestination,
    DragToElement,
    DragToOffset,
    ElementCollection,
    ErrorType,
    ParsedKeySequence,
    SelectAll,
    SelectArguments,
    SelectByLines,
    SelectByOffset,
    SelectByPositions,
    SelectRange,
)
from stepengine.error_handling.exceptions import InvalidActionArgument

_LEADING_INT = re.compile(r"^\s*([+-]?\d+)")
_NUMBER = re.compile(r"^\s*[+-]?(\d+\.?\d*|\.\d+)([eE][+-]?\d+)?")


def ensure_array(target: Any) -> List[Any]:
    return list(target) if isinstance(target, (list, tuple)) else [target]


def parse_int(value: Any) -> Optional[int]:
    """Leading integer of a value, or None when it has none ("12px" -> 12)."""
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if math.isnan(value) or math.isinf(value):
            return None
        return int(value)
    if isinstance(value, str):
        match = _LEADING_INT.match(value)
        return int(match.group(1)) if match else None
    return None


def _parse_number(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return None if math.isnan(value) else float(value)
    if isinstance(value, str):
        match = _NUMBER.match(value)
        return float(match.group(0)) if match else None
    return None


def round_half_up(value: float) -> int:
    return math.floor(value + 0.5)


def is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and not math.isnan(value)


def is_string_or_string_array(target: Any, forbid_empty_array: bool = False) -> bool:
    if isinstance(target, str):
        return True
    if isinstance(target, (list, tuple)) and (not forbid_empty_array or len(target)):
        return all(isinstance(item, str) for item in target)
    return False


def _first_element(page: PageAdapter, target: Any) -> Optional[Any]:
    if isinstance(target, ElementCollection):
        return target[0] if len(target) else None
    if isinstance(target, str):
        matches = page.query(target)
        return matches[0] if matches else None
    if page.is_element(target):
        return target
    return None


def _split_options(args: Sequence[Any], index: int) -> Dict[str, Any]:
    if len(args) > index and isinstance(args[index], Mapping):
        return dict(args[index])
    return {}


def parse_drag_arguments(
    page: PageAdapter, args: Sequence[Any]
) -> Tuple[DragDestination, Dict[str, Any]]:
    """
    Split drag's arguments after the target into a destination and options.

    ``(destination[, options])`` or ``(offset_x, offset_y[, options])``; the
    form is chosen by whether the first value parses as a number.
    """
    second = args[0] if args else None

    if len(args) > 1 and parse_int(second) is not None:
        offset_x = _parse_number(args[0])
        offset_y = _parse_number(args[1])
        if offset_x is None or offset_y is None:
            raise InvalidActionArgument(ErrorType.INCORRECT_DRAGGING_SECOND_ARGUMENT)
        return (
            DragToOffset(
                drag_offset_x=round_half_up(offset_x),
                drag_offset_y=round_half_up(offset_y),
            ),
            _split_options(args, 2),
        )

    if not second:
        raise InvalidActionArgument(ErrorType.INCORRECT_DRAGGING_SECOND_ARGUMENT)

    destination = _first_element(page, second)
    if destination is None:
        raise InvalidActionArgument(ErrorType.INCORRECT_DRAGGING_SECOND_ARGUMENT)

    return DragToElement(destination=destination), _split_options(args, 1)


def parse_select_arguments(
    page: PageAdapter, what: Any, args: Sequence[Any]
) -> SelectArguments:
    """
    Interpret select's arguments after the target.

    A single element or text node requests a range selection between the target
    and that node. Otherwise the values are integers: none selects everything,
    one is an offset, two are start and end positions, more are
    (start line, start position, end line, end position). Line based values
    only apply to multiline fields; the dispatcher reads the first two as
    positions for any other target.
    """
    if not what:
        raise InvalidActionArgument(ErrorType.INCORRECT_SELECT_ACTION_ARGUMENTS)

    first = args[0] if args else None
    if isinstance(first, ElementCollection):
        if not len(first):
            raise InvalidActionArgument(ErrorType.INCORRECT_SELECT_ACTION_ARGUMENTS)
        first = first[0]

    if len(args) == 1 and (page.is_element(first) or page.is_text_node(first)):
        return _parse_select_range(page, what, first)

    values = [parse_int(arg) for arg in args]
    if any(value is None for value in values):
        raise InvalidActionArgument(ErrorType.INCORRECT_SELECT_ACTION_ARGUMENTS)
    if len(values) > 1 and any(value < 0 for value in values):
        raise InvalidActionArgument(ErrorType.INCORRECT_SELECT_ACTION_ARGUMENTS)

    if not values:
        return SelectAll()
    if len(values) == 1:
        return SelectByOffset(offset=values[0])
    if len(values) == 2:
        return SelectByPositions(start_pos=values[0], end_pos=values[1])

    return SelectByLines(
        start_line=values[0],
        start_pos=values[1],
        end_line=values[2],
        end_pos=values[3] if len(values) > 3 else None,
    )


def _parse_select_range(page: PageAdapter, what: Any, end_node: Any) -> SelectRange:
    if page.is_not_visible_node(end_node):
        raise InvalidActionArgument(ErrorType.INCORRECT_SELECT_ACTION_ARGUMENTS)

    start_node = ensure_array(what)[0]
    if not page.is_text_node(start_node):
        start_node = _first_element(page, start_node)

    if start_node is None:
        raise InvalidActionArgument(ErrorType.INCORRECT_SELECT_ACTION_ARGUMENTS)

    if not page.is_content_editable(start_node) or not page.is_content_editable(end_node):
        raise InvalidActionArgument(ErrorType.INCORRECT_SELECT_ACTION_ARGUMENTS)

    common_ancestor = page.nearest_common_ancestor(start_node, end_node)
    if common_ancestor is None:
        raise InvalidActionArgument(ErrorType.INCORRECT_SELECT_ACTION_ARGUMENTS)

    common_parent = (
        page.parent_element(common_ancestor)
        if page.is_text_node(common_ancestor)
        else common_ancestor
    )
    if common_parent is None:
        raise InvalidActionArgument(ErrorType.INCORRECT_SELECT_ACTION_ARGUMENTS)

    return SelectRange(start_node=start_node, end_node=end_node, common_parent=common_parent)


def parse_press_arguments(
    parser: KeySequenceParser, key_sequences: Sequence[Any]
) -> List[ParsedKeySequence]:
    parsed: List[ParsedKeySequence] = []
    for key_sequence in key_sequences:
        if not isinstance(key_sequence, str):
            raise InvalidActionArgument(ErrorType.INCORRECT_PRESS_ACTION_ARGUMENT)
        result = parser.parse(key_sequence)
        if result.error:
            raise InvalidActionArgument(ErrorType.INCORRECT_PRESS_ACTION_ARGUMENT)
        parsed.append(result)

    if not parsed:
        raise InvalidActionArgument(ErrorType.INCORRECT_PRESS_ACTION_ARGUMENT)
    return parsed


def validate_upload_paths(paths: Any) -> Optional[List[str]]:
    """Normalize upload paths; raises for anything but a string or list of strings."""
    if not paths:
        return None
    if not is_string_or_string_array(paths):
        raise InvalidActionArgument(ErrorType.UPLOAD_INVALID_FILE_PATH_ARGUMENT)
    return ensure_array(paths)
