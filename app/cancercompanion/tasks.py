"""Prompts, tool schemas and payload coercion for each orchestration task."""

from __future__ import annotations

from typing import Any

from cancercompanion.config import Settings
from cancercompanion.gateway import ToolSpec
from cancercompanion.normalizer import (
    as_dict_list,
    as_number,
    as_optional_text,
    as_text,
    as_text_list,
)
from cancercompanion.orchestration import TaskSpec

SCAN_SYSTEM_PROMPT = """You are a compassionate medical AI assistant powered by MedGemma. Given a patient's radiology or pathology report, provide:
1. A plain-English summary of what the report says (2-3 paragraphs, use **bold** for key terms)
2. Key medical terms explained simply
3. Questions the patient should ask their doctor
4. Links to trusted resources (cancer.gov, NIH)

Return valid JSON ONLY (no markdown fences):
{
  "summary": "...",
  "terms": [{"term": "...", "definition": "..."}],
  "questions": ["..."],
  "resources": [{"title": "...", "url": "..."}]
}"""

SCAN_BACKUP_INSTRUCTION = (
    "Please analyze this medical report and provide a plain-English explanation. "
    "Extract all findings, key terms, suggest questions for the doctor, and provide "
    "trusted resource links. You MUST respond with valid JSON only."
)

REGIMEN_SYSTEM_PROMPT = """You are a medical AI assistant. Given a chemotherapy regimen, extract:
1. Drug names (generic)
2. Cycle length in days
3. Common side effects per drug
4. Key medical considerations
Return valid JSON: { "drugs": [{"name":"...","commonSideEffects":["..."]}], "cycleDays": number, "considerations": ["..."] }"""

TIMELINE_SYSTEM_PROMPT = """You are a compassionate oncology support AI. Given a chemo regimen analysis, create a patient-friendly day-by-day timeline.
Return valid JSON array: [{ "day": "1", "phase": "Infusion Day", "tips": ["..."], "sideEffects": ["..."], "alert": null | "string" }]
Cover the full cycle. Group days where appropriate (e.g. "4-7"). Use warm, encouraging language. Include when to call the doctor. Return ONLY the JSON, no other text."""

PROFILE_BACKUP_PROMPT = (
    "You are a clinical trials matching AI. Extract a structured patient profile from the oncology "
    "summary. Be precise about cancer type, stage, biomarkers, and prior treatments."
)

PROFILE_SYSTEM_PROMPT = f"""{PROFILE_BACKUP_PROMPT}
Return valid JSON: {{ "cancerType": "...", "cancerSubtype": "...", "stage": "...", "biomarkers": ["..."], "priorTreatments": ["..."], "age": number, "sex": "...", "currentStatus": "...", "searchTerms": ["..."] }}"""

SYNTHESIS_BACKUP_PROMPT = """You are a clinical trials matching expert. Given a patient profile and search results, produce:
1. A list of best matching trials with eligibility assessment
2. For EACH trial, write 2-3 specific questions the patient should ask their oncologist about that trial
3. Write an overall emotional support message (2-3 sentences, warm and encouraging)
4. Write a "what to do next" action plan (3-5 concrete steps)

Be compassionate and clear. If you can extract an NCT ID from the data, include it."""

SYNTHESIS_SYSTEM_PROMPT = f"""{SYNTHESIS_BACKUP_PROMPT}

Return valid JSON: {{ "trials": [{{ "id": "...", "title": "...", "location": "...", "phone": "...", "status": "...", "matchScore": number, "eligibility": "...", "requirements": ["..."], "url": "...", "doctorQuestions": ["..."] }}], "summary": "...", "emotionalMessage": "...", "nextSteps": ["..."] }}"""

MANAGEMENT_TIPS_PROMPT = (
    "You are a medical research assistant. Provide evidence-based, patient-friendly side effect "
    "management strategies. Be concise and practical."
)

TRIAL_RESEARCH_PROMPT = (
    "You are a clinical trials research assistant. Find currently recruiting clinical trials and "
    "provide details including NCT IDs, locations, and eligibility criteria. Be specific and factual."
)

ROUTER_SYSTEM_PROMPT = (
    "You are a helpful medical AI assistant. Answer questions related to health and medicine "
    "accurately and responsibly. Always remind users to consult a doctor for professional advice."
)

_STRING_LIST = {"type": "array", "items": {"type": "string"}}

REGIMEN_TOOL = ToolSpec(
    name="extract_regimen",
    description="Extract structured regimen data",
    parameters={
        "type": "object",
        "properties": {
            "drugs": {
                "type": "array",
                "items": {
                    "type": "object",
                    "properties": {
                        "name": {"type": "string"},
                        "commonSideEffects": _STRING_LIST,
                    },
                    "required": ["name", "commonSideEffects"],
                },
            },
            "cycleDays": {"type": "number"},
            "considerations": _STRING_LIST,
        },
        "required": ["drugs", "cycleDays", "considerations"],
    },
)

PROFILE_TOOL = ToolSpec(
    name="extract_profile",
    description="Extract structured patient profile for trial matching",
    parameters={
        "type": "object",
        "properties": {
            "cancerType": {"type": "string"},
            "cancerSubtype": {"type": "string"},
            "stage": {"type": "string"},
            "biomarkers": _STRING_LIST,
            "priorTreatments": _STRING_LIST,
            "age": {"type": "number"},
            "sex": {"type": "string"},
            "currentStatus": {"type": "string"},
            "searchTerms": _STRING_LIST,
        },
        "required": ["cancerType", "stage", "searchTerms"],
    },
)

TRIALS_TOOL = ToolSpec(
    name="return_trials",
    description="Return matched clinical trials with enhanced data",
    parameters={
        "type": "object",
        "properties": {
            "trials": {
                "type": "array",
                "items": {
                    "type": "object",
                    "properties": {
                        "id": {"type": "string"},
                        "title": {"type": "string"},
                        "location": {"type": "string"},
                        "phone": {"type": "string"},
                        "status": {"type": "string"},
                        "matchScore": {"type": "number"},
                        "eligibility": {"type": "string"},
                        "requirements": _STRING_LIST,
                        "url": {"type": "string"},
                        "doctorQuestions": _STRING_LIST,
                    },
                    "required": ["id", "title", "matchScore", "eligibility", "requirements", "doctorQuestions"],
                },
            },
            "summary": {"type": "string"},
            "emotionalMessage": {"type": "string"},
            "nextSteps": _STRING_LIST,
        },
        "required": ["trials", "summary", "emotionalMessage", "nextSteps"],
    },
)


# Scan reader.


def default_scan_payload(text: str) -> dict[str, Any]:
    return {"summary": text, "terms": [], "questions": [], "resources": []}


def coerce_scan(parsed: Any) -> dict[str, Any] | None:
    if not isinstance(parsed, dict) or "summary" not in parsed:
        return None
    return {
        "summary": as_text(parsed.get("summary")),
        "terms": [
            {"term": as_text(row.get("term")), "definition": as_text(row.get("definition"))}
            for row in as_dict_list(parsed.get("terms"))
            if as_text(row.get("term"))
        ],
        "questions": as_text_list(parsed.get("questions")),
        "resources": [
            {"title": as_text(row.get("title")), "url": as_text(row.get("url"))}
            for row in as_dict_list(parsed.get("resources"))
            if as_text(row.get("url"))
        ],
    }


def scan_task(settings: Settings) -> TaskSpec:
    return TaskSpec(
        name="scan_analysis",
        system_prompt=SCAN_SYSTEM_PROMPT,
        coerce=coerce_scan,
        default_payload=default_scan_payload,
        backup_models=(settings.scan_model,),
        max_tokens=4096,
    )


# Treatment navigator.

DEFAULT_CYCLE_DAYS = 14


def default_regimen_payload(_text: str = "") -> dict[str, Any]:
    return {"drugs": [], "cycleDays": DEFAULT_CYCLE_DAYS, "considerations": []}


def coerce_regimen(parsed: Any) -> dict[str, Any] | None:
    if not isinstance(parsed, dict) or "drugs" not in parsed:
        return None
    drugs = []
    for row in as_dict_list(parsed.get("drugs")):
        name = as_text(row.get("name"))
        if name:
            drugs.append({"name": name, "commonSideEffects": as_text_list(row.get("commonSideEffects"))})
    cycle_days = as_number(parsed.get("cycleDays"), default=DEFAULT_CYCLE_DAYS)
    return {
        "drugs": drugs,
        "cycleDays": max(int(round(cycle_days or DEFAULT_CYCLE_DAYS)), 1),
        "considerations": as_text_list(parsed.get("considerations")),
    }


def regimen_task(settings: Settings) -> TaskSpec:
    return TaskSpec(
        name="regimen_extraction",
        system_prompt=REGIMEN_SYSTEM_PROMPT,
        coerce=coerce_regimen,
        default_payload=default_regimen_payload,
        backup_models=(settings.extraction_model,),
        tool=REGIMEN_TOOL,
    )


def _timeline_rows(parsed: Any) -> list[dict[str, Any]]:
    if isinstance(parsed, list):
        return as_dict_list(parsed)
    if isinstance(parsed, dict):
        for key in ("timeline", "days"):
            if isinstance(parsed.get(key), list):
                return as_dict_list(parsed[key])
    return []


def coerce_timeline(parsed: Any) -> dict[str, Any] | None:
    entries = []
    for row in _timeline_rows(parsed):
        day = as_text(row.get("day"))
        if not day:
            continue
        entries.append(
            {
                "day": day,
                "phase": as_text(row.get("phase")),
                "tips": as_text_list(row.get("tips")),
                "sideEffects": as_text_list(row.get("sideEffects")),
                "alert": as_optional_text(row.get("alert")),
            }
        )
    if not entries:
        return None
    return {"timeline": entries}


def _day_range(start: int, end: int) -> str:
    return str(start) if start >= end else f"{start}-{end}"


def heuristic_timeline(regimen_data: dict[str, Any]) -> list[dict[str, Any]]:
    """Build a generic cycle timeline from extracted regimen data."""
    cycle_days = max(int(regimen_data.get("cycleDays") or DEFAULT_CYCLE_DAYS), 1)
    side_effects: list[str] = []
    for drug in regimen_data.get("drugs") or []:
        for effect in (drug.get("commonSideEffects") or [])[:3]:
            if effect not in side_effects:
                side_effects.append(effect)

    phases = [
        (
            "Infusion Day",
            [
                "Eat a light meal beforehand and bring water and a snack.",
                "Bring a list of your current medications and questions for the care team.",
            ],
            [],
            None,
        ),
        (
            "Early Recovery",
            [
                "Take anti-nausea medication exactly as prescribed, even before you feel sick.",
                "Rest when you need to and keep sipping fluids.",
            ],
            side_effects[:3],
            None,
        ),
        (
            "Low Blood Counts",
            [
                "Wash hands often and avoid crowds or people who are sick.",
                "Check your temperature if you feel warm or unwell.",
            ],
            side_effects[3:6] or side_effects[:2],
            "Call your care team right away for a fever of 100.4°F (38°C) or higher.",
        ),
        (
            "Recovery",
            [
                "Energy usually returns gradually; gentle walks can help.",
                "Note any lingering side effects to discuss before the next cycle.",
            ],
            [],
            None,
        ),
    ]

    # Day 1 infusion, days 2-3 early recovery, then split the rest of the cycle.
    remaining_start = 4
    midpoint = max(remaining_start, (cycle_days + remaining_start) // 2)
    bounds = [(1, 1), (2, min(3, cycle_days)), (remaining_start, min(midpoint, cycle_days)), (midpoint + 1, cycle_days)]

    timeline: list[dict[str, Any]] = []
    for (start, end), (phase, tips, effects, alert) in zip(bounds, phases):
        if start > cycle_days or start > end:
            continue
        timeline.append(
            {
                "day": _day_range(start, end),
                "phase": phase,
                "tips": tips,
                "sideEffects": effects,
                "alert": alert,
            }
        )
    return timeline


def timeline_task(settings: Settings, regimen_data: dict[str, Any]) -> TaskSpec:
    return TaskSpec(
        name="timeline_synthesis",
        system_prompt=TIMELINE_SYSTEM_PROMPT,
        coerce=coerce_timeline,
        default_payload=lambda _text: {"timeline": heuristic_timeline(regimen_data)},
        backup_models=settings.timeline_models,
        soft_backup=True,
    )


# Trial finder.


def default_profile_payload(summary: str) -> dict[str, Any]:
    return {"cancerType": "cancer", "stage": "unknown", "searchTerms": [summary[:80]]}


def coerce_profile(parsed: Any) -> dict[str, Any] | None:
    if not isinstance(parsed, dict) or not as_text(parsed.get("cancerType")):
        return None
    return {
        "cancerType": as_text(parsed.get("cancerType")),
        "cancerSubtype": as_optional_text(parsed.get("cancerSubtype")),
        "stage": as_text(parsed.get("stage"), default="unknown") or "unknown",
        "biomarkers": as_text_list(parsed.get("biomarkers")),
        "priorTreatments": as_text_list(parsed.get("priorTreatments")),
        "age": as_number(parsed.get("age")),
        "sex": as_optional_text(parsed.get("sex")),
        "currentStatus": as_optional_text(parsed.get("currentStatus")),
        "searchTerms": as_text_list(parsed.get("searchTerms")),
    }


def profile_task(settings: Settings, summary: str) -> TaskSpec:
    return TaskSpec(
        name="profile_extraction",
        system_prompt=PROFILE_SYSTEM_PROMPT,
        backup_system_prompt=PROFILE_BACKUP_PROMPT,
        coerce=coerce_profile,
        default_payload=lambda _text: default_profile_payload(summary),
        backup_models=(settings.extraction_model,),
        tool=PROFILE_TOOL,
    )


def default_trials_payload(_text: str = "") -> dict[str, Any]:
    return {
        "trials": [],
        "summary": "Unable to find matching trials.",
        "emotionalMessage": "",
        "nextSteps": [],
    }


def coerce_trials(parsed: Any) -> dict[str, Any] | None:
    if not isinstance(parsed, dict) or not isinstance(parsed.get("trials"), list):
        return None
    trials = []
    for row in as_dict_list(parsed.get("trials")):
        title = as_text(row.get("title"))
        if not title:
            continue
        trials.append(
            {
                "id": as_text(row.get("id")),
                "title": title,
                "location": as_optional_text(row.get("location")),
                "phone": as_optional_text(row.get("phone")),
                "status": as_optional_text(row.get("status")),
                "matchScore": as_number(row.get("matchScore"), default=0.0),
                "eligibility": as_text(row.get("eligibility")),
                "requirements": as_text_list(row.get("requirements")),
                "url": as_optional_text(row.get("url")),
                "doctorQuestions": as_text_list(row.get("doctorQuestions")),
            }
        )
    return {
        "trials": trials,
        "summary": as_text(parsed.get("summary")),
        "emotionalMessage": as_text(parsed.get("emotionalMessage")),
        "nextSteps": as_text_list(parsed.get("nextSteps")),
    }


def synthesis_task(settings: Settings) -> TaskSpec:
    return TaskSpec(
        name="trial_synthesis",
        system_prompt=SYNTHESIS_SYSTEM_PROMPT,
        backup_system_prompt=SYNTHESIS_BACKUP_PROMPT,
        coerce=coerce_trials,
        default_payload=default_trials_payload,
        backup_models=(settings.extraction_model,),
        tool=TRIALS_TOOL,
    )
