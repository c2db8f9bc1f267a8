"""File operation requests for the file-edit sandbox."""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class FileOperationType(str, Enum):
    """Supported file operations."""

    READ = "read"
    WRITE = "write"
    EDIT = "edit"
    DELETE = "delete"
    CREATE = "create"
    LIST = "list"


class FileOperation(BaseModel):
    """One structured file-edit request.

    Paths are relative to the sandbox root; a leading separator does not make
    them absolute.
    """

    type: FileOperationType = Field(..., description="Operation to perform")
    path: str = Field(default="", description="Sandbox-relative path")
    content: Optional[str] = Field(None, description="New content for write, create and edit")
    line_start: Optional[int] = Field(None, description="First line to replace, 1-based inclusive")
    line_end: Optional[int] = Field(None, description="Last line to replace, 1-based inclusive")
