"""Registry of action sub-executors invoked by action nodes."""

import inspect
import threading
from typing import Any, Callable, Dict, Optional

from .exceptions import ActionRegistryError
from .logging import get_logger

logger = get_logger(__name__)

ActionFunction = Callable[..., Any]


class ActionRegistry:
    """Registry for the callables behind each ``actionType``.

    Every action has the signature ``(config, input_data) -> output`` and
    raises on failure. Actions that declare a ``variables`` parameter also
    receive a read-only copy of the run's variables.
    """

    def __init__(self):
        self._actions: Dict[str, ActionFunction] = {}
        self._descriptions: Dict[str, str] = {}
        self._wants_variables: Dict[str, bool] = {}
        self._lock = threading.RLock()

    def register_action(
        self,
        name: str,
        function: ActionFunction,
        description: str = "",
        replace: bool = False,
    ) -> None:
        """Register a callable as the implementation of an action type.

        Args:
            name: Action type, e.g. ``http_request``
            function: Callable taking ``(config, input_data)``
            description: Optional description of the action
            replace: Allow overriding an existing registration

        Raises:
            ActionRegistryError: If the name is taken or the function is invalid
        """
        if not name or not name.strip():
            raise ActionRegistryError("Action name cannot be empty")

        name = name.strip()

        if not callable(function):
            raise ActionRegistryError(f"Action '{name}' must be callable", action_name=name)

        try:
            sig = inspect.signature(function)
        except (ValueError, TypeError) as e:
            raise ActionRegistryError(
                f"Cannot inspect function signature for action '{name}': {e}", action_name=name
            )

        positional = [
            p for p in sig.parameters.values()
            if p.kind in (p.POSITIONAL_ONLY, p.POSITIONAL_OR_KEYWORD, p.VAR_POSITIONAL)
        ]
        if len(positional) < 2 and not any(p.kind == p.VAR_POSITIONAL for p in positional):
            raise ActionRegistryError(
                f"Action '{name}' must accept (config, input_data)", action_name=name, operation="register"
            )

        wants_variables = "variables" in sig.parameters or any(
            p.kind == p.VAR_KEYWORD for p in sig.parameters.values()
        )

        with self._lock:
            if name in self._actions and not replace:
                raise ActionRegistryError(f"Action '{name}' is already registered", action_name=name)
            self._actions[name] = function
            self._descriptions[name] = description.strip() if description else ""
            self._wants_variables[name] = wants_variables

        logger.info(f"Registered action '{name}' from {function.__module__}.{getattr(function, '__name__', repr(function))}")

    def get_action(self, name: str) -> ActionFunction:
        """Retrieve a registered action by name.

        Raises:
            ActionRegistryError: If the action is not registered
        """
        if not name or not str(name).strip():
            raise ActionRegistryError("Action name cannot be empty")

        name = str(name).strip()
        with self._lock:
            function = self._actions.get(name)
        if function is None:
            raise ActionRegistryError(f"Unsupported action type: {name}", action_name=name)
        return function

    def list_actions(self) -> Dict[str, str]:
        """Map of registered action names to their descriptions."""
        with self._lock:
            return dict(self._descriptions)

    def unregister_action(self, name: str) -> bool:
        """Remove an action; returns False if it was not registered."""
        with self._lock:
            removed = self._actions.pop(name, None) is not None
            self._descriptions.pop(name, None)
            self._wants_variables.pop(name, None)
        if removed:
            logger.info(f"Unregistered action '{name}'")
        return removed

    def action_exists(self, name: str) -> bool:
        with self._lock:
            return name in self._actions

    def call_action(
        self,
        name: str,
        config: Dict[str, Any],
        input_data: Any,
        variables: Optional[Dict[str, Any]] = None,
    ) -> Any:
        """Invoke an action.

        Args:
            name: Action type
            config: Action-specific configuration
            input_data: Data flowing into the node
            variables: Run variables, passed only to actions that declare them

        Returns:
            The action's output

        Raises:
            ActionRegistryError: If the action is not registered
            Exception: Whatever the action raises
        """
        function = self.get_action(name)
        with self._lock:
            wants_variables = self._wants_variables.get(name, False)

        if wants_variables:
            return function(config, input_data, variables=dict(variables or {}))
        return function(config, input_data)
