from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class ResolveRequest(BaseModel):
    selection: Dict[str, Any] = Field(default_factory=dict, description="slot (or model name) -> selection")
    strict: Optional[bool] = Field(default=None, description="Defaults to CMPKIT_STRICT_SPECIALIZATION.")
    hints: List[Dict[str, str]] = Field(default_factory=list, description="Slot -> model name, used to disambiguate")


class ResolveResponse(BaseModel):
    root: str
    model: str
    specialized: bool
    specialized_children: Dict[str, List[str]]


class InstantiateRequest(BaseModel):
    selection: Dict[str, Any] = Field(default_factory=dict)
    arguments: Dict[str, Any] = Field(default_factory=dict)
    specialize: bool = True
    hints: List[Dict[str, str]] = Field(default_factory=list)
    config: Optional[Dict[str, Any]] = Field(default=None, description="EngineConfig overrides for this call")


class InstantiateResponse(BaseModel):
    root: int
    model: str
    plan: Dict[str, Any]
