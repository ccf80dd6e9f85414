"""
===============================
Lifecycle hooks per table.
===============================

Hooks are registered on a HookRegistry owned by one Database instance, so
registering a hook in one client never affects another.

Events:
    before_insert, after_insert, before_update, after_update,
    before_upsert, after_upsert, before_delete, after_delete

Before-hooks receive (payload, context) and may return a replacement
payload; returning None keeps the current one. After-hooks receive
(result, payload, context) and their return value is ignored.

Example:
    >>> hooks = HookRegistry()
    >>> hooks.register('users', 'before_insert',
    ...                lambda data, ctx: {**data, 'email': data['email'].lower()})
    >>> hooks.run_before('users', 'insert', {'email': 'A@B.C'}, HookContext('users', 'insert'))
    {'email': 'a@b.c'}
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)

OPERATIONS = ('insert', 'update', 'upsert', 'delete')
EVENTS = tuple(f"{stage}_{operation}" for operation in OPERATIONS for stage in ('before', 'after'))


class HookError(ValueError):
    """Exception raised when registering a hook for an unknown event."""
    pass


@dataclass
class HookContext:
    """What a hook is running for.

    Attributes:
        table: Table name
        operation: insert, update, upsert or delete
        where: Condition of an update or delete, when there is one
    """

    table: str
    operation: str
    where: Any = None


class HookRegistry:
    """Hooks keyed by (table, event), run in registration order."""

    def __init__(self):
        self._hooks: Dict[Tuple[str, str], List[Callable]] = {}

    def register(self, table: str, event: str, hook: Callable) -> Callable:
        """
        Register a hook.

        Args:
            table: Table name
            event: One of EVENTS
            hook: Callable; see module docstring for signatures

        Returns:
            The registered hook

        Raises:
            HookError: For an unknown event or a non-callable hook
        """
        if event not in EVENTS:
            raise HookError(f"Unknown hook event '{event}', expected one of {', '.join(EVENTS)}")
        if not callable(hook):
            raise HookError(f"Hook for '{table}.{event}' is not callable")
        self._hooks.setdefault((table, event), []).append(hook)
        logger.debug(f"Registered {event} hook on '{table}'")
        return hook

    def remove(self, table: str, event: Optional[str] = None) -> None:
        """Remove the hooks of one event, or of every event when event is None."""
        for key in list(self._hooks):
            if key[0] == table and (event is None or key[1] == event):
                del self._hooks[key]

    def clear(self) -> None:
        self._hooks.clear()

    def hooks(self, table: str, event: str) -> List[Callable]:
        return list(self._hooks.get((table, event), []))

    def run_before(self, table: str, operation: str, payload: Any, context: HookContext) -> Any:
        for hook in self.hooks(table, f"before_{operation}"):
            replacement = hook(payload, context)
            if replacement is not None:
                payload = replacement
        return payload

    def run_after(self, table: str, operation: str, result: Any, payload: Any,
                  context: HookContext) -> None:
        for hook in self.hooks(table, f"after_{operation}"):
            hook(result, payload, context)
