"""HTTP request/response models. Field names are camelCase on the wire."""
from datetime import date
from typing import Any, Dict, List, Literal, Optional

from pydantic import AliasChoices, BaseModel, Field


class ParseRequest(BaseModel):
    input: str = Field(min_length=1, max_length=500)
    useAi: bool = True


class BatchParseRequest(BaseModel):
    inputs: List[str] = Field(min_length=1, max_length=20)
    useAi: bool = True


class ParseResponse(BaseModel):
    task: Dict[str, Any]
    source: Literal["ai", "fallback"]
    confidence: float
    confidenceLevel: str
    summary: str


class QuickAddResponse(BaseModel):
    taskId: int
    task: Dict[str, Any]
    source: Literal["ai", "fallback"]
    generatedInstances: int = 0
    summary: str


class RuleIn(BaseModel):
    type: str
    interval: int = 1
    daysOfWeek: Optional[List[int]] = None
    dayOfMonth: Optional[int] = None
    monthOfYear: Optional[int] = None
    endDate: Optional[date] = None
    occurrences: Optional[int] = None


class PreviewRequest(BaseModel):
    rule: RuleIn
    start: Optional[date] = None
    count: int = Field(default=10, ge=1, le=100)


class PreviewResponse(BaseModel):
    description: str
    dates: List[date]
    count: int


class GenerateResponse(BaseModel):
    success: bool = True
    generatedCount: int
    message: str


class CleanupRequest(BaseModel):
    daysPastDue: int = Field(
        default=7, ge=1, le=30,
        validation_alias=AliasChoices("daysPastDue", "daysAgo"),
    )


class RecurringStats(BaseModel):
    totalTemplates: int
    totalInstances: int
    upcomingInstances: int
    overdueInstances: int


class StatsResponse(RecurringStats):
    summary: str


class CleanupResponse(BaseModel):
    success: bool = True
    deletedCount: int
    message: str
    stats: RecurringStats


class CronResponse(BaseModel):
    success: bool = True
    generatedCount: int
    deletedCount: int
    durationMs: int
