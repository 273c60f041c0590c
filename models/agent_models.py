# models/agent_models.py
"""Shared base model for pipeline records."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict


class AgentBaseModel(BaseModel):
    """Base model allowing attribute-based construction and extra fields."""

    model_config = ConfigDict(from_attributes=True, extra="allow")
