"""File system action."""

import json
import shutil
from pathlib import Path
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..core.logging import get_logger

logger = get_logger(__name__)

FILE_OPERATIONS = ("read", "write", "delete", "copy", "move")


class FileOperationConfig(BaseModel):
    """Configuration of a ``file_operation`` action."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    operation: str
    source_path: str = Field(..., min_length=1, alias="sourcePath")
    target_path: Optional[str] = Field(default=None, alias="targetPath")
    content: Any = None
    encoding: str = Field(default="utf-8")
    create_directories: bool = Field(default=False, alias="createDirectories")

    @field_validator("operation")
    @classmethod
    def validate_operation(cls, v: str) -> str:
        operation = v.strip().lower()
        if operation not in FILE_OPERATIONS:
            raise ValueError(f"Unsupported file operation: {v}")
        return operation


def _as_text(content: Any) -> str:
    if content is None:
        return ""
    if isinstance(content, str):
        return content
    return json.dumps(content, default=str)


def _prepare_target(path: Path, create_directories: bool):
    if create_directories:
        path.parent.mkdir(parents=True, exist_ok=True)
    elif not path.parent.exists():
        raise FileNotFoundError(f"Directory does not exist: {path.parent}")


def file_operation(config: Dict[str, Any], input_data: Any) -> Dict[str, Any]:
    """
    Read, write, delete, copy or move one file.

    Args:
        config: Action configuration; ``content`` defaults to the input data
        input_data: Data flowing into the node

    Returns:
        Description of the completed operation; ``read`` includes the content

    Raises:
        FileNotFoundError: If a source file or target directory is missing
        ValueError: If a copy or move has no target path
    """
    settings = FileOperationConfig.model_validate(config)
    source = Path(settings.source_path)
    operation = settings.operation

    logger.info(f"File {operation}: {source}")

    if operation == "read":
        content = source.read_text(encoding=settings.encoding)
        return {"path": str(source), "content": content, "size": len(content)}

    if operation == "write":
        content = _as_text(input_data if settings.content is None else settings.content)
        _prepare_target(source, settings.create_directories)
        source.write_text(content, encoding=settings.encoding)
        return {"path": str(source), "bytesWritten": len(content.encode(settings.encoding))}

    if operation == "delete":
        if not source.exists():
            raise FileNotFoundError(f"File does not exist: {source}")
        source.unlink()
        return {"path": str(source), "deleted": True}

    if not settings.target_path:
        raise ValueError(f"File {operation} requires a targetPath")
    if not source.exists():
        raise FileNotFoundError(f"File does not exist: {source}")

    target = Path(settings.target_path)
    _prepare_target(target, settings.create_directories)
    if operation == "copy":
        shutil.copyfile(source, target)
    else:
        shutil.move(str(source), str(target))
    return {"sourcePath": str(source), "targetPath": str(target), "operation": operation}
