"""Expression script action."""

import builtins
from types import MappingProxyType
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..core.logging import get_logger

logger = get_logger(__name__)

SAFE_BUILTINS = {
    name: getattr(builtins, name)
    for name in (
        "abs", "all", "any", "bool", "dict", "enumerate", "float", "int", "isinstance",
        "len", "list", "max", "min", "range", "round", "set", "sorted", "str", "sum",
        "tuple", "zip",
    )
}
SAFE_BUILTINS.update({"True": True, "False": False, "None": None})


def _referenced_names(code) -> set:
    names = set(code.co_names)
    for const in code.co_consts:
        if hasattr(const, "co_names"):
            names |= _referenced_names(const)
    return names


def _string_constants(code) -> list:
    strings = []
    for const in code.co_consts:
        if isinstance(const, str):
            strings.append(const)
        elif isinstance(const, (tuple, frozenset)):
            strings.extend(item for item in const if isinstance(item, str))
        elif hasattr(const, "co_consts"):
            strings.extend(_string_constants(const))
    return strings


class CustomScriptConfig(BaseModel):
    """Configuration of a ``custom_script`` action."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    language: str = Field(default="python")
    script: str = Field(..., min_length=1)


def custom_script(config: Dict[str, Any], input_data: Any, variables: Optional[Dict[str, Any]] = None) -> Any:
    """
    Evaluate a single Python expression.

    The expression sees ``input`` and a read-only ``variables`` mapping and
    only a small set of builtins. Statements and imports are rejected at
    compile time.

    Raises:
        ValueError: If the language is not python or the script does not compile
    """
    settings = CustomScriptConfig.model_validate(config)
    if settings.language.strip().lower() != "python":
        raise ValueError(f"Unsupported script language: {settings.language}")

    try:
        code = compile(settings.script.strip(), "<custom_script>", "eval")
    except SyntaxError as e:
        raise ValueError(f"Script must be a single expression: {e.msg}")

    if any(name.startswith("__") for name in _referenced_names(code)):
        raise ValueError("Script may not access dunder attributes")
    # str.format can reach attributes through its field syntax
    if any("__" in text for text in _string_constants(code)):
        raise ValueError("Script may not reference dunder names in string literals")

    scope = {"input": input_data, "variables": MappingProxyType(dict(variables or {}))}
    logger.debug("Evaluating custom script")
    return eval(code, {"__builtins__": SAFE_BUILTINS}, scope)
