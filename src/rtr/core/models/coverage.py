from typing import List, Optional

from pydantic import BaseModel, Field


class ApexClassOrTriggerRef(BaseModel):
    model_config = {"extra": "ignore"}

    Id: str
    Name: str


class CoverageLines(BaseModel):
    model_config = {"extra": "ignore"}

    coveredLines: List[int] = Field(default_factory=list)
    uncoveredLines: List[int] = Field(default_factory=list)


class ApexCodeCoverageRecord(BaseModel):
    """Coverage of one class by one test method."""

    model_config = {"extra": "ignore"}

    ApexTestClassId: str
    ApexClassOrTrigger: ApexClassOrTriggerRef
    TestMethodName: str
    NumLinesCovered: int = 0
    NumLinesUncovered: int = 0
    Coverage: Optional[CoverageLines] = None


class ApexCodeCoverageAggregateRecord(BaseModel):
    """Coverage of one class across the whole run."""

    model_config = {"extra": "ignore"}

    ApexClassOrTrigger: ApexClassOrTriggerRef
    NumLinesCovered: int = 0
    NumLinesUncovered: int = 0
    Coverage: CoverageLines = Field(default_factory=CoverageLines)


class ApexOrgWideCoverageRecord(BaseModel):
    model_config = {"extra": "ignore"}

    PercentCovered: int = 0
