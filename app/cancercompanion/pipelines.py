"""Request-scoped pipelines behind the scan, regimen and trial endpoints."""

from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass
from typing import Any

import httpx

from cancercompanion.config import Settings
from cancercompanion.enrichment import (
    FirecrawlSearch,
    InteractionAnalyzer,
    PerplexityResearch,
    format_search_context,
)
from cancercompanion.errors import InvalidRequestError
from cancercompanion.gateway import BackupChatGateway, PrimaryModelGateway
from cancercompanion.logs import get_logger
from cancercompanion.orchestration import FallbackOrchestrator, TaskOutcome
from cancercompanion.schemas import (
    RegimenGuide,
    RegimenRequest,
    RouterRequest,
    RouterResponse,
    ScanAnalysis,
    ScanRequest,
    TrialMatches,
    TrialRequest,
)
from cancercompanion.status import SourceTag, StatusReporter
from cancercompanion.tasks import (
    MANAGEMENT_TIPS_PROMPT,
    ROUTER_SYSTEM_PROMPT,
    SCAN_BACKUP_INSTRUCTION,
    TRIAL_RESEARCH_PROMPT,
    profile_task,
    regimen_task,
    scan_task,
    synthesis_task,
    timeline_task,
)

logger = get_logger(__name__)

HEURISTIC_LABEL = "Fallback (heuristic)"


def describe_sources(outcomes: list[TaskOutcome], *, extra: list[str] | None = None) -> str:
    labels: list[str] = []
    for outcome in outcomes:
        label = outcome.label
        if label and label not in labels:
            labels.append(label)
    labels.extend(x for x in (extra or []) if x not in labels)
    return " + ".join(labels) if labels else HEURISTIC_LABEL


class ScanReader:
    def __init__(self, settings: Settings, orchestrator: FallbackOrchestrator):
        self._settings = settings
        self._orchestrator = orchestrator

    @staticmethod
    def _backup_content(request: ScanRequest) -> list[dict[str, Any]]:
        data_uri = f"data:{request.mime_type};base64,{request.file_base64}"
        if request.mime_type.startswith("image/"):
            file_part: dict[str, Any] = {"type": "image_url", "image_url": {"url": data_uri}}
        else:
            file_part = {"type": "file", "file": {"filename": request.file_name, "file_data": data_uri}}
        return [file_part, {"type": "text", "text": SCAN_BACKUP_INSTRUCTION}]

    async def analyze(self, request: ScanRequest) -> ScanAnalysis:
        if not request.file_base64.strip():
            raise InvalidRequestError("File content is required")

        logger.info("scan_started", file_name=request.file_name, mime_type=request.mime_type)
        prompt = (
            f"Analyze this medical report file ({request.file_name}). The file content is provided "
            "as base64. Extract and explain the findings."
        )
        outcome = await self._orchestrator.run(
            scan_task(self._settings),
            prompt,
            backup_content=self._backup_content(request),
        )
        return ScanAnalysis.model_validate({**outcome.payload, "modelUsed": describe_sources([outcome])})


class TreatmentNavigator:
    def __init__(
        self,
        settings: Settings,
        orchestrator: FallbackOrchestrator,
        search: FirecrawlSearch,
        research: PerplexityResearch,
        interactions: InteractionAnalyzer,
    ):
        self._settings = settings
        self._orchestrator = orchestrator
        self._search = search
        self._research = research
        self._interactions = interactions

    @staticmethod
    def _build_interactions(regimen_data: dict[str, Any], interaction_analysis: str | None) -> list[dict[str, str]]:
        interactions = [
            {"severity": "warning" if index == 0 else "info", "message": consideration}
            for index, consideration in enumerate(regimen_data.get("considerations") or [])
        ]
        for drug in regimen_data.get("drugs") or []:
            effects = ", ".join((drug.get("commonSideEffects") or [])[:3])
            if effects:
                message = f"{drug['name']}: Common side effects include {effects}."
            else:
                message = f"{drug['name']}: Ask your care team which side effects to watch for."
            interactions.append({"severity": "info", "message": message})
        if interaction_analysis:
            interactions.insert(
                0,
                {"severity": "warning", "message": f"TxGemma Drug Interaction Analysis: {interaction_analysis}"},
            )
        return interactions

    async def _fda_resources(self, drug_names: list[str]) -> list[dict[str, str]]:
        if not drug_names:
            return []
        query = (
            f"{' '.join(drug_names)} chemotherapy side effects management "
            "site:cancer.gov OR site:drugs.com"
        )
        hits = await self._search.search(query, limit=3)
        return [{"title": hit.title, "url": hit.url, "description": hit.description} for hit in hits]

    async def navigate(self, request: RegimenRequest) -> RegimenGuide:
        regimen = request.regimen.strip()
        if not regimen:
            raise InvalidRequestError("Regimen is required")

        logger.info("regimen_step", step="extract")
        extraction = await self._orchestrator.run(regimen_task(self._settings), regimen)
        regimen_data = extraction.payload
        drug_names = [drug["name"] for drug in regimen_data.get("drugs") or []]

        logger.info("regimen_step", step="interactions", drugs=len(drug_names))
        interaction_analysis = await self._interactions.analyze(drug_names, regimen)

        timeline_content = f"Regimen: {regimen}\nAnalysis: {json.dumps(regimen_data, ensure_ascii=True)}"
        if interaction_analysis:
            timeline_content += f"\n\nDrug interaction analysis from TxGemma: {interaction_analysis}"

        logger.info("regimen_step", step="timeline")
        timeline = await self._orchestrator.run(timeline_task(self._settings, regimen_data), timeline_content)

        logger.info("regimen_step", step="enrichment")
        fda_resources, management_tips = await asyncio.gather(
            self._fda_resources(drug_names),
            self._research.ask(
                f"What are the best evidence-based strategies for managing side effects of {regimen}? "
                "Include nutrition tips, when to seek emergency care, and practical daily advice.",
                system_prompt=MANAGEMENT_TIPS_PROMPT,
            ),
        )

        extra = ["TxGemma"] if interaction_analysis else []
        return RegimenGuide.model_validate(
            {
                "timeline": timeline.payload["timeline"],
                "interactions": self._build_interactions(regimen_data, interaction_analysis),
                "fdaResources": fda_resources,
                "managementTips": management_tips,
                "regimenData": regimen_data,
                "modelUsed": describe_sources([extraction, timeline], extra=extra),
            }
        )


class TrialFinder:
    def __init__(
        self,
        settings: Settings,
        orchestrator: FallbackOrchestrator,
        search: FirecrawlSearch,
        research: PerplexityResearch,
    ):
        self._settings = settings
        self._orchestrator = orchestrator
        self._search = search
        self._research = research

    @staticmethod
    def _research_question(profile: dict[str, Any]) -> str:
        biomarkers = profile.get("biomarkers") or []
        biomarker_text = f", biomarkers: {', '.join(biomarkers)}" if biomarkers else ""
        age = profile.get("age")
        age_text = f"{age:g}" if isinstance(age, (int, float)) else "adult"
        prior = ", ".join(profile.get("priorTreatments") or []) or "none listed"
        return (
            f"Find currently recruiting clinical trials for: {profile.get('cancerType')}, "
            f"{profile.get('stage')}{biomarker_text}. Patient is {age_text} years old. "
            f"Prior treatments: {prior}."
        )

    async def match(self, request: TrialRequest) -> TrialMatches:
        summary = request.summary.strip()
        if not summary:
            raise InvalidRequestError("Summary is required")

        logger.info("trial_step", step="profile")
        profile_outcome = await self._orchestrator.run(profile_task(self._settings, summary), summary)
        profile = profile_outcome.payload

        logger.info("trial_step", step="enrichment")
        search_query = (
            f"{profile.get('cancerType')} {profile.get('stage')} {' '.join(profile.get('biomarkers') or [])} "
            "clinical trial recruiting site:clinicaltrials.gov"
        )
        hits, research = await asyncio.gather(
            self._search.search(search_query, limit=8),
            self._research.ask(self._research_question(profile), system_prompt=TRIAL_RESEARCH_PROMPT),
        )

        synthesis_input = (
            f"Patient Profile: {json.dumps(profile, ensure_ascii=True)}\n\n"
            f"Firecrawl Results (from ClinicalTrials.gov):\n{format_search_context(hits)}\n\n"
            f"Perplexity Research:\n{research}"
        ).strip()

        logger.info("trial_step", step="synthesis")
        matched = await self._orchestrator.run(synthesis_task(self._settings), synthesis_input)
        logger.info("trial_matches", count=len(matched.payload.get("trials") or []))

        return TrialMatches.model_validate(
            {
                **matched.payload,
                "profile": profile,
                "modelUsed": describe_sources([profile_outcome, matched]),
            }
        )


class AIRouter:
    """Server-side proxy so the backup key never reaches the browser."""

    def __init__(self, orchestrator: FallbackOrchestrator):
        self._orchestrator = orchestrator

    async def ask(self, request: RouterRequest) -> RouterResponse:
        if not request.prompt.strip():
            raise InvalidRequestError("Prompt is required")
        outcome = await self._orchestrator.ask(request.prompt, request.system_prompt or ROUTER_SYSTEM_PROMPT)
        return RouterResponse(content=outcome.payload["content"], source=SourceTag.BACKUP_ACTIVE.label)


@dataclass
class CompanionServices:
    settings: Settings
    status: StatusReporter
    orchestrator: FallbackOrchestrator
    scan_reader: ScanReader
    treatment_navigator: TreatmentNavigator
    trial_finder: TrialFinder
    router: AIRouter


def build_services(
    settings: Settings,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
    status: StatusReporter | None = None,
) -> CompanionServices:
    status = status or StatusReporter(notice_window_sec=settings.fallback_notice_window_sec)
    primary = PrimaryModelGateway(settings, transport=transport)
    orchestrator = FallbackOrchestrator(
        settings,
        primary=primary,
        backup=BackupChatGateway(settings, transport=transport),
        status=status,
    )
    search = FirecrawlSearch(settings, transport=transport)
    research = PerplexityResearch(settings, transport=transport)
    return CompanionServices(
        settings=settings,
        status=status,
        orchestrator=orchestrator,
        scan_reader=ScanReader(settings, orchestrator),
        treatment_navigator=TreatmentNavigator(
            settings,
            orchestrator,
            search,
            research,
            InteractionAnalyzer(primary),
        ),
        trial_finder=TrialFinder(settings, orchestrator, search, research),
        router=AIRouter(orchestrator),
    )
