"""Pydantic schemas for CancerCompanion endpoints and internal contracts."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        coerce_numbers_to_str=True,
    )

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


# Provider contracts.


class ProviderRequest(BaseModel):
    model_config = ConfigDict(frozen=True)

    task_prompt: str
    system_prompt: str
    timeout_ms: int = Field(default=5000, gt=0)


class ProviderSuccess(BaseModel):
    model_config = ConfigDict(frozen=True)

    ok: Literal[True] = True
    provider: str
    text: str


class ProviderFailure(BaseModel):
    model_config = ConfigDict(frozen=True)

    ok: Literal[False] = False
    provider: str
    reason: str
    status_code: int | None = None


ProviderResult = ProviderSuccess | ProviderFailure


class SearchHit(BaseModel):
    title: str = ""
    url: str = ""
    description: str = ""
    markdown: str = ""


# Inbound requests.


class ScanRequest(CamelModel):
    file_base64: str = Field(default="", validation_alias=AliasChoices("fileBase64", "file_base64", "file"))
    mime_type: str = Field(
        default="application/octet-stream",
        validation_alias=AliasChoices("mimeType", "mime_type"),
    )
    file_name: str = Field(default="report", validation_alias=AliasChoices("fileName", "file_name"))


class RegimenRequest(CamelModel):
    regimen: str = ""


class TrialRequest(CamelModel):
    summary: str = ""


class RouterRequest(CamelModel):
    prompt: str = ""
    system_prompt: str | None = None


# Scan reader.


class Term(CamelModel):
    term: str = ""
    definition: str = ""


class Resource(CamelModel):
    title: str = ""
    url: str = ""


class ScanAnalysis(CamelModel):
    summary: str = ""
    terms: list[Term] = Field(default_factory=list)
    questions: list[str] = Field(default_factory=list)
    resources: list[Resource] = Field(default_factory=list)
    model_used: str = ""


# Treatment navigator.


class Drug(CamelModel):
    name: str
    common_side_effects: list[str] = Field(default_factory=list)


class RegimenData(CamelModel):
    drugs: list[Drug] = Field(default_factory=list)
    cycle_days: int = 14
    considerations: list[str] = Field(default_factory=list)


class TimelineEntry(CamelModel):
    day: str
    phase: str = ""
    tips: list[str] = Field(default_factory=list)
    side_effects: list[str] = Field(default_factory=list)
    alert: str | None = None


class Interaction(CamelModel):
    severity: Literal["warning", "info"] = "info"
    message: str


class FdaResource(CamelModel):
    title: str = ""
    url: str = ""
    description: str = ""


class RegimenGuide(CamelModel):
    timeline: list[TimelineEntry] = Field(default_factory=list)
    interactions: list[Interaction] = Field(default_factory=list)
    fda_resources: list[FdaResource] = Field(default_factory=list)
    management_tips: str = ""
    regimen_data: RegimenData = Field(default_factory=RegimenData)
    model_used: str = ""


# Trial finder.


class PatientProfile(CamelModel):
    cancer_type: str = "cancer"
    cancer_subtype: str | None = None
    stage: str = "unknown"
    biomarkers: list[str] = Field(default_factory=list)
    prior_treatments: list[str] = Field(default_factory=list)
    age: float | None = None
    sex: str | None = None
    current_status: str | None = None
    search_terms: list[str] = Field(default_factory=list)


class Trial(CamelModel):
    id: str = ""
    title: str = ""
    location: str | None = None
    phone: str | None = None
    status: str | None = None
    match_score: float = 0.0
    eligibility: str = ""
    requirements: list[str] = Field(default_factory=list)
    url: str | None = None
    doctor_questions: list[str] = Field(default_factory=list)


class TrialMatches(CamelModel):
    trials: list[Trial] = Field(default_factory=list)
    summary: str = ""
    emotional_message: str = ""
    next_steps: list[str] = Field(default_factory=list)
    profile: PatientProfile = Field(default_factory=PatientProfile)
    model_used: str = ""


# Generic proxy and status.


class RouterResponse(CamelModel):
    content: str
    source: str


class StatusResponse(CamelModel):
    status: str
    label: str
    last_updated: str
