import asyncio
from typing import Any, Optional

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, Field

from .dashboard import (
    flag_failed_transactions,
    summarize_incidents,
    summarize_patterns,
    summarize_posture,
)
from .directory import StaticUserDirectory, directory_from_env
from .models import (
    AnalysisResult,
    FlaggedTransactions,
    IncidentReport,
    PatternSummary,
    PostureSummary,
)
from .risk.features import normalize_snapshot
from .risk.scoring import detect_findings
from .triage import AnalysisError, analyze_snapshot

router = APIRouter(prefix="/risk")


class AnalyzeRequest(BaseModel):
    transactions: list[dict[str, Any]] = Field(default_factory=list)
    users: Optional[list[dict[str, Any]]] = Field(
        default=None,
        description="Directory snapshot; when omitted the configured directory is queried",
    )
    limit: Optional[int] = Field(default=None, ge=1, description="Page size the snapshot was fetched with")


class PostureRequest(BaseModel):
    transactions: list[dict[str, Any]] = Field(default_factory=list)
    users: list[dict[str, Any]] = Field(default_factory=list)


class FlaggedRequest(BaseModel):
    transactions: list[dict[str, Any]] = Field(default_factory=list)
    limit: Optional[int] = Field(default=None, ge=1)


class IncidentsRequest(BaseModel):
    logs: list[dict[str, Any]] = Field(default_factory=list, description="Activity-log entries, newest first")


@router.post("/analyze", response_model=AnalysisResult)
async def analyze(body: AnalyzeRequest) -> AnalysisResult:
    if body.users is not None:
        directory = StaticUserDirectory(body.users)
    else:
        directory = directory_from_env()

    try:
        return await asyncio.to_thread(
            analyze_snapshot, body.transactions, body.limit, directory=directory
        )
    except AnalysisError as e:
        raise HTTPException(status_code=500, detail=str(e))


@router.post("/posture", response_model=PostureSummary)
async def posture(body: PostureRequest) -> PostureSummary:
    try:
        return summarize_posture(body.transactions, body.users)
    except AnalysisError as e:
        raise HTTPException(status_code=500, detail=str(e))


@router.post("/flagged", response_model=FlaggedTransactions)
async def flagged(body: FlaggedRequest) -> FlaggedTransactions:
    return flag_failed_transactions(body.transactions, body.limit)


@router.post("/patterns", response_model=list[PatternSummary])
async def patterns(body: FlaggedRequest) -> list[PatternSummary]:
    records, _ = normalize_snapshot(body.transactions)
    return summarize_patterns(detect_findings(records))


@router.post("/incidents", response_model=IncidentReport)
async def incidents(body: IncidentsRequest) -> IncidentReport:
    return summarize_incidents(body.logs)
