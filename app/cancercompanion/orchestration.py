"""Primary-then-backup orchestration of one logical model task."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable

from cancercompanion.config import Settings
from cancercompanion.errors import MalformedPayloadError, UpstreamRateLimitError, UpstreamTransportError
from cancercompanion.gateway import BackupChatGateway, PrimaryModelGateway, ToolSpec
from cancercompanion.logs import get_logger
from cancercompanion.normalizer import DefaultFactory, normalize, parse_json_reply, strip_code_fences
from cancercompanion.schemas import ProviderFailure, ProviderRequest, ProviderResult, ProviderSuccess
from cancercompanion.status import SourceTag, StatusReporter, backup_label

logger = get_logger(__name__)

Coercer = Callable[[Any], dict[str, Any] | None]

PRIMARY_LABEL = "MedGemma (Primary)"


class OrchestrationState(str, Enum):
    IDLE = "idle"
    ATTEMPTING_PRIMARY = "attempting_primary"
    PRIMARY_SUCCEEDED = "primary_succeeded"
    ATTEMPTING_BACKUP = "attempting_backup"
    BACKUP_SUCCEEDED = "backup_succeeded"
    ALL_FAILED = "all_failed"


class ProviderTier(str, Enum):
    PRIMARY = "primary"
    BACKUP = "backup"


@dataclass(frozen=True)
class TaskSpec:
    """One logical unit of model work.

    `coerce` maps a parsed reply to the task payload and returns None when the
    reply lacks the task's required fields. `default_payload` receives the
    cleaned reply text (possibly empty) and must always produce a complete
    payload. Tasks with `soft_backup` try each backup model in turn and end
    with the default instead of raising.
    """

    name: str
    system_prompt: str
    coerce: Coercer
    default_payload: DefaultFactory
    backup_models: tuple[str, ...]
    tool: ToolSpec | None = None
    backup_system_prompt: str | None = None
    soft_backup: bool = False
    max_tokens: int | None = None


@dataclass
class TaskOutcome:
    task: str
    payload: dict[str, Any]
    state: OrchestrationState
    source: ProviderTier | None
    model: str | None = None
    trail: list[OrchestrationState] = field(default_factory=list)

    @property
    def label(self) -> str | None:
        if self.source is ProviderTier.PRIMARY:
            return PRIMARY_LABEL
        if self.source is ProviderTier.BACKUP:
            return backup_label(self.model or "")
        return None


class FallbackOrchestrator:
    """Attempts the primary model, then the backup, strictly one after the other."""

    def __init__(
        self,
        settings: Settings,
        primary: PrimaryModelGateway,
        backup: BackupChatGateway,
        status: StatusReporter,
    ):
        self._settings = settings
        self._primary = primary
        self._backup = backup
        self._status = status

    @property
    def status(self) -> StatusReporter:
        return self._status

    async def _attempt_primary(self, prompt: str, system_prompt: str) -> ProviderResult:
        self._status.publish(SourceTag.CONNECTING)
        return await self._primary.predict(
            ProviderRequest(
                task_prompt=prompt,
                system_prompt=system_prompt,
                timeout_ms=self._settings.primary_timeout_ms,
            )
        )

    @staticmethod
    def _accept_primary(task: TaskSpec, result: ProviderResult) -> dict[str, Any] | None:
        if isinstance(result, ProviderFailure):
            return None
        try:
            parsed = parse_json_reply(result.text)
        except MalformedPayloadError as exc:
            logger.warning("primary_payload_malformed", task=task.name, error=str(exc))
            return None
        payload = task.coerce(parsed)
        if payload is None:
            logger.warning("primary_payload_incomplete", task=task.name)
        return payload

    @staticmethod
    def _accept_backup(task: TaskSpec, text: str) -> dict[str, Any] | None:
        if task.tool is not None:
            # Tool arguments are schema-constrained; a missing call means the default.
            if not text.strip():
                return task.default_payload("")
            try:
                parsed = parse_json_reply(text)
            except MalformedPayloadError:
                return task.default_payload("")
        elif task.soft_backup:
            try:
                parsed = parse_json_reply(text)
            except MalformedPayloadError:
                return None
        else:
            parsed = normalize(text, task.default_payload)

        payload = task.coerce(parsed)
        if payload is not None:
            return payload
        if task.soft_backup:
            return None
        return task.default_payload(strip_code_fences(text) if task.tool is None else "")

    async def _call_backup(
        self,
        task: TaskSpec,
        model: str,
        content: str | list[dict[str, Any]],
    ) -> ProviderResult:
        system_prompt = task.backup_system_prompt or task.system_prompt
        if task.tool is not None:
            return await self._backup.extract(
                model=model,
                system_prompt=system_prompt,
                user_content=content,
                tool=task.tool,
            )
        return await self._backup.complete(
            model=model,
            system_prompt=system_prompt,
            user_content=content,
            max_tokens=task.max_tokens,
        )

    @staticmethod
    def _failure_error(task_name: str, failure: ProviderFailure) -> UpstreamTransportError:
        logger.error(
            "all_providers_failed",
            task=task_name,
            provider=failure.provider,
            reason=failure.reason,
            status_code=failure.status_code,
        )
        if failure.status_code == 429:
            return UpstreamRateLimitError(failure.provider)
        return UpstreamTransportError(failure.provider, failure.reason, failure.status_code)

    async def run(
        self,
        task: TaskSpec,
        user_content: str,
        *,
        backup_content: str | list[dict[str, Any]] | None = None,
    ) -> TaskOutcome:
        trail = [OrchestrationState.IDLE]

        if self._primary.configured:
            trail.append(OrchestrationState.ATTEMPTING_PRIMARY)
            result = await self._attempt_primary(user_content, task.system_prompt)
            payload = self._accept_primary(task, result)
            if payload is not None:
                trail.append(OrchestrationState.PRIMARY_SUCCEEDED)
                self._status.publish(SourceTag.PRIMARY_ACTIVE)
                logger.info("task_completed", task=task.name, tier=ProviderTier.PRIMARY.value)
                return TaskOutcome(
                    task=task.name,
                    payload=payload,
                    state=OrchestrationState.PRIMARY_SUCCEEDED,
                    source=ProviderTier.PRIMARY,
                    model=self._primary.provider,
                    trail=trail,
                )
            self._status.notify_fallback()
        else:
            logger.info("primary_not_configured", task=task.name)

        trail.append(OrchestrationState.ATTEMPTING_BACKUP)
        content = backup_content if backup_content is not None else user_content
        last_failure: ProviderFailure | None = None

        for model in task.backup_models:
            result = await self._call_backup(task, model, content)
            if isinstance(result, ProviderFailure):
                last_failure = result
                if task.soft_backup:
                    continue
                break

            payload = self._accept_backup(task, result.text)
            if payload is None:
                logger.warning("backup_payload_unusable", task=task.name, model=model)
                continue

            trail.append(OrchestrationState.BACKUP_SUCCEEDED)
            self._status.publish(SourceTag.BACKUP_ACTIVE, model=model)
            logger.info("task_completed", task=task.name, tier=ProviderTier.BACKUP.value, model=model)
            return TaskOutcome(
                task=task.name,
                payload=payload,
                state=OrchestrationState.BACKUP_SUCCEEDED,
                source=ProviderTier.BACKUP,
                model=model,
                trail=trail,
            )

        trail.append(OrchestrationState.ALL_FAILED)
        if task.soft_backup:
            logger.warning("task_degraded_to_default", task=task.name)
            return TaskOutcome(
                task=task.name,
                payload=task.default_payload(""),
                state=OrchestrationState.ALL_FAILED,
                source=None,
                trail=trail,
            )
        if last_failure is None:
            last_failure = ProviderFailure(provider=self._backup.provider, reason="no_usable_reply")
        raise self._failure_error(task.name, last_failure)

    async def ask(self, prompt: str, system_prompt: str, *, use_primary: bool = False) -> TaskOutcome:
        """Free-text question answered by whichever tier responds first."""
        trail = [OrchestrationState.IDLE]
        if use_primary and self._primary.configured:
            trail.append(OrchestrationState.ATTEMPTING_PRIMARY)
            result = await self._attempt_primary(prompt, system_prompt)
            if isinstance(result, ProviderSuccess):
                trail.append(OrchestrationState.PRIMARY_SUCCEEDED)
                self._status.publish(SourceTag.PRIMARY_ACTIVE)
                return TaskOutcome(
                    task="ask",
                    payload={"content": result.text},
                    state=OrchestrationState.PRIMARY_SUCCEEDED,
                    source=ProviderTier.PRIMARY,
                    model=self._primary.provider,
                    trail=trail,
                )
            self._status.notify_fallback()

        trail.append(OrchestrationState.ATTEMPTING_BACKUP)
        model = self._settings.router_model
        result = await self._backup.complete(model=model, system_prompt=system_prompt, user_content=prompt)
        if isinstance(result, ProviderFailure):
            raise self._failure_error("ask", result)

        trail.append(OrchestrationState.BACKUP_SUCCEEDED)
        self._status.publish(SourceTag.BACKUP_ACTIVE, model=model)
        return TaskOutcome(
            task="ask",
            payload={"content": result.text},
            state=OrchestrationState.BACKUP_SUCCEEDED,
            source=ProviderTier.BACKUP,
            model=model,
            trail=trail,
        )
