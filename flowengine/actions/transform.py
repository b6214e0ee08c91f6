"""Data transformation action."""

import csv
import io
import json
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..core.logging import get_logger
from ..core.node_executors import get_nested_value

logger = get_logger(__name__)


class DataTransformConfig(BaseModel):
    """Configuration of a ``data_transform`` action."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    transform_type: str = Field(..., alias="transformType")
    input_variable: Optional[str] = Field(default=None, alias="inputVariable")
    input_path: Optional[str] = Field(default=None, alias="inputPath")
    fields: List[str] = Field(default_factory=list)
    options: Dict[str, Any] = Field(default_factory=dict)


def _json_parse(value: Any, options: Dict[str, Any]) -> Any:
    if not isinstance(value, (str, bytes)):
        raise ValueError(f"json_parse expects a string, got {type(value).__name__}")
    return json.loads(value)


def _json_stringify(value: Any, options: Dict[str, Any]) -> str:
    return json.dumps(value, indent=options.get("indent"), default=str)


def _csv_parse(value: Any, options: Dict[str, Any]) -> List[Dict[str, str]]:
    if not isinstance(value, str):
        raise ValueError(f"csv_parse expects a string, got {type(value).__name__}")
    reader = csv.DictReader(io.StringIO(value), delimiter=options.get("delimiter", ","))
    return [dict(row) for row in reader]


def _csv_stringify(value: Any, options: Dict[str, Any]) -> str:
    if isinstance(value, dict):
        value = [value]
    if not isinstance(value, list) or not all(isinstance(row, dict) for row in value):
        raise ValueError("csv_stringify expects a list of objects")

    fieldnames: List[str] = list(options.get("columns") or [])
    if not fieldnames:
        for row in value:
            for key in row:
                if key not in fieldnames:
                    fieldnames.append(key)

    output = io.StringIO()
    writer = csv.DictWriter(
        output, fieldnames=fieldnames, delimiter=options.get("delimiter", ","),
        extrasaction="ignore", lineterminator="\n",
    )
    writer.writeheader()
    writer.writerows(value)
    return output.getvalue()


TRANSFORMS = {
    "json_parse": _json_parse,
    "json_stringify": _json_stringify,
    "csv_parse": _csv_parse,
    "csv_stringify": _csv_stringify,
}


def data_transform(config: Dict[str, Any], input_data: Any, variables: Optional[Dict[str, Any]] = None) -> Any:
    """
    Transform the input data, or one run variable, into a new value.

    ``pick`` keeps only the dotted ``fields`` of an object; the other
    transform types convert between JSON or CSV text and structured data.

    Raises:
        ValueError: If the transform type is unsupported or the value has the wrong shape
    """
    settings = DataTransformConfig.model_validate(config)
    transform_type = settings.transform_type.strip().lower()

    if settings.input_variable:
        source = (variables or {}).get(settings.input_variable)
    else:
        source = input_data
    if settings.input_path:
        source = get_nested_value(source, settings.input_path)

    logger.debug(f"Applying {transform_type} transform")

    if transform_type == "pick":
        if not isinstance(source, dict):
            raise ValueError(f"pick expects an object, got {type(source).__name__}")
        return {field: get_nested_value(source, field) for field in settings.fields}

    transform = TRANSFORMS.get(transform_type)
    if transform is None:
        raise ValueError(f"Unsupported transform type: {settings.transform_type}")
    return transform(source, settings.options)
