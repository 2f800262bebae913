"""Pydantic models for the backend API."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class QueryModel(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    ref_id: str = Field("A", alias="refId")
    expr: Optional[str] = None
    query_text: Optional[str] = Field(None, alias="queryText")
    hide_labels: bool = Field(False, alias="hideLabels")

    def as_target(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class QueryRequestModel(BaseModel):
    queries: List[QueryModel] = Field(default_factory=list)


class FieldModel(BaseModel):
    name: str
    type: str
    values: List[Any] = Field(default_factory=list)
    labels: Dict[str, str] = Field(default_factory=dict)
    config: Dict[str, Any] = Field(default_factory=dict)


class FrameModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str
    ref_id: str = Field("", alias="refId")
    labels: Dict[str, str] = Field(default_factory=dict)
    meta: Dict[str, Any] = Field(default_factory=dict)
    fields: List[FieldModel] = Field(default_factory=list)


class TargetResultModel(BaseModel):
    frames: List[FrameModel] = Field(default_factory=list)
    error: Optional[str] = None
    status: int = 200


class QueryResponseModel(BaseModel):
    results: Dict[str, TargetResultModel] = Field(default_factory=dict)


class HealthModel(BaseModel):
    status: str
    message: str
    details: Optional[str] = None


class CompletionModel(BaseModel):
    label: str
    kind: str
