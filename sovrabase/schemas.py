from pydantic import BaseModel, field_validator
from datetime import datetime
from enum import Enum
from typing import Optional


class InstanceStatus(str, Enum):
    RUNNING = "running"
    STOPPED = "stopped"

    def __str__(self) -> str:
        return self.value


class InstanceOptions(BaseModel):
    """Options for a new database instance. Empty fields get defaults at create time."""
    postgres_version: Optional[str] = None  # e.g. "16-alpine"
    password: Optional[str] = None  # generated when empty
    port: Optional[int] = None  # allocated when empty or 0
    memory: Optional[str] = None  # e.g. "512m", no limit when empty
    cpus: Optional[str] = None  # e.g. "0.5", no limit when empty

    @field_validator('port')
    @classmethod
    def validate_port(cls, v):
        if v is None or v == 0:
            return None
        if v < 1 or v > 65535:
            raise ValueError('Port must be between 1 and 65535')
        return v

    @field_validator('postgres_version', 'password', 'memory', 'cpus')
    @classmethod
    def empty_to_none(cls, v):
        if v is not None and not v.strip():
            return None
        return v


class InstanceInfo(BaseModel):
    """
    Connection and state record of a tenant's database instance.

    Always rebuilt from backend state (container inspection or cluster
    objects plus their metadata), never stored on its own.
    """
    tenant_id: str
    instance_id: str
    instance_name: str
    status: InstanceStatus
    postgres_version: str
    host: str
    port: str
    database: str
    user: str
    password: str
    connection_string: str
    created_at: Optional[datetime] = None

    @property
    def is_running(self) -> bool:
        return self.status == InstanceStatus.RUNNING
