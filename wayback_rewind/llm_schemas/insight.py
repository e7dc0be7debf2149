from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class Sentiment(BaseModel):
    """Tone of the site at each end of the comparison, plus the direction of travel."""
    model_config = ConfigDict(extra="ignore")

    earlier: str = ""
    later: str = ""
    # e.g. more_corporate, more_casual, more_minimal, no_change, complete_rebrand
    trend: str = ""


class InsightAnalysis(BaseModel):
    """
    LLM output contract for a two-snapshot comparison.
    Every field has an empty default so a bare {} is a valid (empty) analysis.
    """
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    summary: str = ""
    key_changes: list[str] = Field(default_factory=list, alias="keyChanges")
    design_changes: list[str] = Field(default_factory=list, alias="designChanges")
    content_changes: list[str] = Field(default_factory=list, alias="contentChanges")
    business_insights: list[str] = Field(default_factory=list, alias="businessInsights")
    sentiment: Sentiment | None = None
    actionable_insights: list[str] | None = Field(default=None, alias="actionableInsights")

    def is_empty(self) -> bool:
        return not (
            self.summary
            or self.key_changes
            or self.design_changes
            or self.content_changes
            or self.business_insights
        )

    def to_public(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)
