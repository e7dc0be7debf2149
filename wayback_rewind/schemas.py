from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class AnalyzeRequest(BaseModel):
    """Body of POST /api/analyze. Presence of url/date1/date2 is checked by the endpoint (400, not 422)."""
    model_config = ConfigDict(populate_by_name=True)

    url: str | None = None
    date1: str | None = None
    date2: str | None = None
    archive_url1: str | None = Field(default=None, alias="archiveUrl1")
    archive_url2: str | None = Field(default=None, alias="archiveUrl2")


class DateRange(BaseModel):
    oldest: str | None = None
    newest: str | None = None


class InsightsRequest(BaseModel):
    """Body of POST /api/insights."""
    model_config = ConfigDict(populate_by_name=True)

    url: str | None = None
    snapshot_count: int = Field(default=0, ge=0, alias="snapshotCount")
    date_range: DateRange | None = Field(default=None, alias="dateRange")
