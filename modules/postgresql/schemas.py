"""
PostgreSQL Module - Request and Response Models

Pydantic models exchanged with the host's HTTP layer. Passwords arrive here
already decoded from their transport encoding.
"""

from datetime import datetime
from typing import Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from . import DEFAULT_PERMISSION, ENGINE_TYPE, ORIGIN_LOCAL


class _Model(BaseModel):
    # "from" is a Python keyword; accept it on the wire, use ``origin`` in code
    model_config = ConfigDict(populate_by_name=True)


# ============================================================================
# Requests
# ============================================================================

class PostgresqlDBCreate(_Model):
    """Request to create a database (and its owning role) on an engine instance"""
    name: str = Field(..., min_length=1, max_length=63)
    origin: str = Field(ORIGIN_LOCAL, alias="from")
    database: str = Field(..., min_length=1, description="Engine instance name")
    format: str = "UTF8"
    username: str = Field(..., min_length=1, max_length=63)
    password: str = Field(..., min_length=1)
    description: str = ""


class PostgresqlDBSearch(BaseModel):
    """Paginated search of the database catalog"""
    page: int = Field(1, ge=1)
    page_size: int = Field(10, ge=1, le=1000)
    info: str = ""
    database: str = ""
    order_by: str = "created_at"
    order: str = "descending"


class ChangeDBInfo(_Model):
    """Password or access change; id 0 targets the engine's administrative role"""
    id: int = 0
    origin: str = Field(ORIGIN_LOCAL, alias="from")
    type: str = ENGINE_TYPE
    database: str = Field(..., min_length=1)
    value: str = Field(..., min_length=1)


class UpdateDescription(BaseModel):
    id: int
    description: str = ""


class PostgresqlDBDeleteCheck(BaseModel):
    id: int
    type: str = ENGINE_TYPE
    database: str


class PostgresqlDBDelete(BaseModel):
    id: int
    type: str = ENGINE_TYPE
    database: str
    force_delete: bool = False
    delete_backup: bool = False


class PostgresqlConfUpdateByFile(BaseModel):
    type: str = ENGINE_TYPE
    database: str
    file: str


class OperationWithNameAndType(BaseModel):
    type: str = ENGINE_TYPE
    name: str


# ============================================================================
# Responses
# ============================================================================

class PostgresqlDBInfo(_Model):
    """Catalog row as exposed to callers"""
    id: int
    created_at: Optional[Union[datetime, str]] = None
    name: str
    postgresql_name: str
    origin: str = Field(ORIGIN_LOCAL, alias="from")
    format: str = ""
    username: str = ""
    permission: str = DEFAULT_PERMISSION
    description: str = ""


class PostgresqlOption(_Model):
    id: int
    origin: str = Field(ORIGIN_LOCAL, alias="from")
    type: str = ENGINE_TYPE
    database: str
    name: str


class DBBaseInfo(BaseModel):
    name: str
    container_name: str
    port: int


class DeleteResult(BaseModel):
    """Outcome of a delete; warnings list best-effort cleanup steps that failed"""
    warnings: list[str] = Field(default_factory=list)
