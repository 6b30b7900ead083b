"""Pydantic schemas for environments and variables."""

from pydantic import BaseModel


class EnvironmentSchema(BaseModel):
    """Workspace-scoped variable set."""
    id: str
    workspace_id: str
    name: str
    is_active: bool = False

    model_config = {"from_attributes": True}


class VariableSchema(BaseModel):
    """Environment variable. Mutable so flushes can update it in place."""
    id: str
    environment_id: str
    key: str
    value: str = ""
    is_secret: bool = False

    model_config = {"from_attributes": True}
