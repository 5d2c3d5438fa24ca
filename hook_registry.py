"""In-memory registry of before/after mutation hooks keyed by entity and event."""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from enum import IntEnum
from typing import Callable, Dict, List, Union

logger = logging.getLogger("spark.hooks")

OPERATIONS = ("create", "update", "delete")
EVENTS = tuple(f"{phase}_{op}" for phase in ("before", "after") for op in OPERATIONS)


class HookPriority(IntEnum):
    HIGH = 10
    NORMAL = 50
    LOW = 90


@dataclass(frozen=True)
class HookContext:
    entity: str
    operation: str
    user_id: str
    team_id: str | None = None
    data: dict | None = None
    previous_data: dict | None = None


@dataclass(frozen=True)
class Continue:
    data: dict | None = None


@dataclass(frozen=True)
class Abort:
    reason: str = "Operation cancelled by hook"


Decision = Union[Continue, Abort]
Hook = Callable[[HookContext], Union[Decision, None]]


@dataclass
class _Registered:
    hook: Hook
    priority: int
    name: str | None
    seq: int


def _event(phase: str, operation: str) -> str:
    event = f"{phase}_{operation}"
    if event not in EVENTS:
        raise ValueError(f"unknown hook event: {event}")
    return event


class HookRegistry:
    def __init__(self) -> None:
        self._hooks: Dict[str, Dict[str, List[_Registered]]] = {}
        self._seq = 0

    def register(
        self,
        entity_slug: str,
        event: str,
        hook: Hook,
        priority: int = HookPriority.NORMAL,
        name: str | None = None,
    ) -> None:
        if event not in EVENTS:
            raise ValueError(f"unknown hook event: {event}")
        self._seq += 1
        bucket = self._hooks.setdefault(entity_slug, {}).setdefault(event, [])
        bucket.append(_Registered(hook=hook, priority=int(priority), name=name, seq=self._seq))
        bucket.sort(key=lambda r: (r.priority, r.seq))

    def unregister(self, entity_slug: str, event: str, hook: Hook | str) -> bool:
        bucket = self._hooks.get(entity_slug, {}).get(event)
        if not bucket:
            return False
        for idx, registered in enumerate(bucket):
            if registered.hook is hook or (isinstance(hook, str) and registered.name == hook):
                del bucket[idx]
                return True
        return False

    def hooks_for(self, entity_slug: str, event: str) -> list[Hook]:
        return [r.hook for r in self._hooks.get(entity_slug, {}).get(event, [])]

    def clear(self, entity_slug: str | None = None) -> None:
        if entity_slug is None:
            self._hooks.clear()
            return
        self._hooks.pop(entity_slug, None)

    def execute_before_hooks(self, entity_slug: str, operation: str, context: HookContext) -> Decision:
        """Run before-hooks in priority order until one aborts.

        A hook returning ``Continue(data)`` replaces the data later hooks (and
        the caller) see. A hook that raises is treated as an abort carrying the
        exception text. The returned ``Continue`` has ``data`` set only if some
        hook changed it.
        """
        event = _event("before", operation)
        current = context
        changed: dict | None = None
        for registered in self._hooks.get(entity_slug, {}).get(event, []):
            try:
                decision = registered.hook(current)
            except Exception as exc:
                logger.warning(
                    "before_hook_failed entity=%s event=%s hook=%s error=%s",
                    entity_slug,
                    event,
                    registered.name or getattr(registered.hook, "__name__", "hook"),
                    exc,
                )
                return Abort(reason=f"Hook execution failed: {exc}")
            if isinstance(decision, Abort):
                logger.info("before_hook_abort entity=%s event=%s reason=%s", entity_slug, event, decision.reason)
                return decision
            if isinstance(decision, Continue) and decision.data is not None:
                changed = decision.data
                current = replace(current, data=changed)
        return Continue(data=changed)

    def execute_after_hooks(self, entity_slug: str, operation: str, context: HookContext) -> None:
        event = _event("after", operation)
        for registered in self._hooks.get(entity_slug, {}).get(event, []):
            try:
                registered.hook(context)
            except Exception:
                logger.exception(
                    "after_hook_failed entity=%s event=%s hook=%s",
                    entity_slug,
                    event,
                    registered.name or getattr(registered.hook, "__name__", "hook"),
                )

