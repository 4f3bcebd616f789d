# Author: Koushik Sen (ksen@berkeley.edu)
# Contributors:
# Koushik Sen (ksen@berkeley.edu)
# add your name here

"""Best-effort parsing of incomplete JSON text streamed in fragments."""

import json
import re
from typing import Any

_CLOSERS = {"{": "}", "[": "]"}
_DANGLING_ESCAPE = re.compile(r"\\u[0-9a-fA-F]{0,3}$")
# Deeper nesting is beyond what the json module can decode anyway.
MAX_DEPTH = 512

# Open containers as a linked stack, innermost first: (bracket, rest) or None.
# Cut points share tails, so recording one costs O(1).
_Stack = tuple[str, Any] | None


def _closers(stack: _Stack) -> str:
    parts = []
    while stack is not None:
        bracket, stack = stack
        parts.append(_CLOSERS[bracket])
    return "".join(parts)


def _scan(text: str) -> tuple[bool, _Stack, list[tuple[int, _Stack]], int]:
    """Walk ``text`` once, tracking string state and open containers.

    Returns:
        A tuple of (inside_string, open_containers, cut_points, max_depth). Each
        cut point is ``(end, containers)``: ``text[:end]`` ends on a container
        boundary and can be completed by closing ``containers``.
    """
    stack: _Stack = None
    depth = max_depth = 0
    cut_points: list[tuple[int, _Stack]] = []
    in_string = False
    escaped = False
    for i, ch in enumerate(text):
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch in _CLOSERS:
            stack = (ch, stack)
            depth += 1
            max_depth = max(max_depth, depth)
            cut_points.append((i + 1, stack))
        elif ch in "}]":
            if stack is not None:
                stack = stack[1]
                depth -= 1
        elif ch == "," and stack is not None:
            cut_points.append((i, stack))
    return in_string, stack, cut_points, max_depth


def _loads(text: str) -> Any:
    try:
        return json.loads(text)
    except (ValueError, RecursionError):
        return None


def parse_partial_json(text: str | None) -> Any:
    """Parse JSON that may be truncated at any point.

    Complete JSON is parsed as-is. Otherwise an unterminated string is closed and
    open objects and arrays are closed; if that is still not valid JSON the text
    is cut back to the last container boundary and closed there. The repair is
    deterministic, so a growing prefix never produces a worse value than the
    boundary it was last cut at. Never raises.

    Args:
        text: The accumulated JSON text.

    Returns:
        The parsed value, or None when nothing usable can be recovered
        (including input nested deeper than ``MAX_DEPTH``).
    """
    if not text or not text.strip():
        return None
    try:
        return json.loads(text)
    except (ValueError, RecursionError):
        pass

    in_string, containers, cut_points, max_depth = _scan(text)
    if max_depth > MAX_DEPTH:
        return None
    head = text
    if in_string:
        head = _DANGLING_ESCAPE.sub("", head)
        trailing = len(head) - len(head.rstrip("\\"))
        if trailing % 2:
            head = head[:-1]
        head += '"'
    value = _loads(head.rstrip().rstrip(",") + _closers(containers))
    if value is not None:
        return value

    for end, open_containers in reversed(cut_points):
        value = _loads(text[:end] + _closers(open_containers))
        if value is not None:
            return value
    return None
