"""
Action grammar for model replies.

The model answers with one call per step:
- do(action="Tap", element=[x,y])
- do(action="Swipe", start=[x1,y1], end=[x2,y2])
- do(action="Type", text="xxx")
- do(action="Launch", app="xxx")
- do(action="Wait", duration="2 seconds")
- finish(message="xxx")

Parsing never fails on text: anything that is not a recognizable call is
treated as a finish carrying the raw reply.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, fields
from typing import Any, Union

FINISH_MARKER = "finish("
DO_MARKER = "do("
FINISH_CALL = "finish(message="

_PAIR_KEYS = ("element", "start", "end")
_STRING_KEYS = ("text", "app", "duration", "message")


class ActionParseError(RuntimeError):
    pass


@dataclass(frozen=True)
class ActionParams:
    element: tuple[int, int] | None = None
    start: tuple[int, int] | None = None
    end: tuple[int, int] | None = None
    text: str | None = None
    app: str | None = None
    duration: str | None = None
    message: str | None = None


@dataclass(frozen=True)
class FinishAction:
    message: str = ""


@dataclass(frozen=True)
class DoAction:
    name: str
    params: ActionParams = ActionParams()

    @property
    def parameters(self) -> dict[str, Any]:
        out: dict[str, Any] = {"action": self.name}
        for f in fields(self.params):
            value = getattr(self.params, f.name)
            if value is None:
                continue
            out[f.name] = list(value) if isinstance(value, tuple) else value
        return out


ParsedAction = Union[DoAction, FinishAction]


def _parse_quoted(text: str, key: str) -> str | None:
    m = re.search(rf"\b{re.escape(key)}\s*=\s*([\"'])(.*?)\1", text, flags=re.DOTALL)
    if not m:
        return None
    return m.group(2)


def _parse_pair(text: str, key: str) -> tuple[int, int] | None:
    m = re.search(rf"\b{re.escape(key)}\s*=\s*\[\s*(-?\d+)\s*,\s*(-?\d+)\s*\]", text)
    if not m:
        return None
    return int(m.group(1)), int(m.group(2))


def parse_action(reply: str) -> ParsedAction:
    if not isinstance(reply, str):
        raise ActionParseError(f"cannot parse reply of type {type(reply).__name__}")

    stripped = reply.strip()
    is_do = stripped.startswith(DO_MARKER)
    # A do call may carry "finish(" inside its quoted arguments.
    if stripped.startswith(FINISH_MARKER) or (FINISH_CALL in stripped and not is_do):
        return FinishAction(message=_parse_quoted(reply, "message") or "")

    if DO_MARKER in stripped:
        name = _parse_quoted(reply, "action") or "Unknown"
        values: dict[str, Any] = {}
        for key in _PAIR_KEYS:
            pair = _parse_pair(reply, key)
            if pair is not None:
                values[key] = pair
        for key in _STRING_KEYS:
            value = _parse_quoted(reply, key)
            if value is not None:
                values[key] = value
        return DoAction(name=name, params=ActionParams(**values))

    return FinishAction(message=stripped)


def split_thinking_and_action(content: str) -> tuple[str, str]:
    """Split a raw reply into (thinking, action_text)."""
    for marker in ("finish(message=", "do(action="):
        if marker in content:
            thinking, rest = content.split(marker, 1)
            return thinking.strip(), marker + rest

    if "<answer>" in content:
        thinking, rest = content.split("<answer>", 1)
        thinking = thinking.replace("<think>", "").replace("</think>", "").strip()
        return thinking, rest.replace("</answer>", "").strip()

    return "", content


def action_summary(action: ParsedAction) -> str:
    if isinstance(action, FinishAction):
        return f"finish({action.message!r})"
    params = action.params
    if params.element is not None:
        return f"{action.name}({params.element[0]},{params.element[1]})"
    if params.start is not None and params.end is not None:
        return f"{action.name}({params.start[0]},{params.start[1]}->{params.end[0]},{params.end[1]})"
    if params.text is not None:
        short = params.text if len(params.text) <= 20 else params.text[:20] + "..."
        return f"{action.name}(text={short!r})"
    if params.app is not None:
        return f"{action.name}(app={params.app!r})"
    if params.duration is not None:
        return f"{action.name}({params.duration})"
    return action.name
