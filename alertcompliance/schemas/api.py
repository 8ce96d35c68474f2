"""
Wire models for the read APIs: alerts, rules and instant query.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class APIAlert(BaseModel):
    """An active alert as reported by the alerts and rules APIs."""
    labels: Dict[str, str] = Field(default_factory=dict)
    annotations: Dict[str, str] = Field(default_factory=dict)
    state: str = ""
    activeAt: Optional[datetime] = None
    value: str = ""


class APIRule(BaseModel):
    """A rule inside a rule group. Recording rules leave the alert fields empty."""
    state: str = ""
    name: str = ""
    query: str = ""
    duration: float = 0
    labels: Dict[str, str] = Field(default_factory=dict)
    annotations: Dict[str, str] = Field(default_factory=dict)
    alerts: List[APIAlert] = Field(default_factory=list)
    health: str = ""
    lastError: str = ""
    type: str = ""
    lastEvaluation: Optional[datetime] = None
    evaluationTime: float = 0


class APIRuleGroup(BaseModel):
    name: str
    file: str = ""
    rules: List[APIRule] = Field(default_factory=list)
    interval: float = 0
    evaluationTime: float = 0
    lastEvaluation: Optional[datetime] = None


class AlertsData(BaseModel):
    alerts: List[APIAlert] = Field(default_factory=list)


class AlertsResponse(BaseModel):
    status: str
    data: AlertsData = Field(default_factory=AlertsData)
    error: Optional[str] = None


class RulesData(BaseModel):
    groups: List[APIRuleGroup] = Field(default_factory=list)


class RulesResponse(BaseModel):
    status: str
    data: RulesData = Field(default_factory=RulesData)
    error: Optional[str] = None


class VectorResult(BaseModel):
    metric: Dict[str, str] = Field(default_factory=dict)
    # [unix seconds, "value"]
    value: List[Any] = Field(default_factory=list)


class QueryData(BaseModel):
    resultType: str = ""
    result: List[VectorResult] = Field(default_factory=list)


class QueryResponse(BaseModel):
    status: str
    data: QueryData = Field(default_factory=QueryData)
    error: Optional[str] = None
