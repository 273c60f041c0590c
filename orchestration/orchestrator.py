# orchestration/orchestrator.py
"""Top-level job controller: select a mode, run its pipeline, return a result."""

from __future__ import annotations

from collections.abc import Callable

import structlog

from config import Temperatures, settings
from core.llm_interface import ProviderError, TextProvider
from core.retry import (
    LONG_PLANNING_POLICY,
    PLANNING_POLICY,
    POLISH_POLICY,
    REVISION_POLICY,
    RetryPolicy,
)
from models import (
    AssemblerOutput,
    GenerationMetadata,
    GenerationMode,
    GenerationRequest,
    GenerationResult,
    PatchAttempt,
    PlannerOutput,
    PolishOutput,
)
from orchestration.act_flow import (
    act_count,
    act_summary,
    act_temperature,
    build_planner_prompt,
    cumulative_context,
)
from orchestration.models import Act, GenerationJob
from parsing import (
    extract,
    parse_assembler_response,
    parse_planner_response,
    parse_polish_response,
)
from processing import quality_gate
from processing.content_safety import applies_to, sanitize_romance
from processing.continuation import (
    build_continuation_prompt,
    is_truncated,
    merge_continuation,
)
from processing.length_corrector import correct_length
from processing.metrics import bigram_repetition, check_length, has_hook
from processing.patch_selector import (
    PatchContext,
    PatchThresholds,
    build_patch_prompt,
    pick_patch,
)
from processing.promise_ledger import PromiseLedger
from processing.text_cleanup import (
    sanitize_user_prompt,
    scrub_motif_tokens,
    soft_dedupe,
    strip_audio_beats,
    strip_meta_lines,
)
from profiles import ProfileRegistry, get_registry
from prompt_renderer import render_prompt
from storage.artifact_sink import ArtifactSink, RecordingProvider
from utils.text_processing import count_words, extract_chapters, sanitize_control_markers

logger = structlog.get_logger(__name__)

POLISH_PREFILL = "<<<CHAPTERS>>>\n⟪CHAPTERS⟫\n# Chapter"
REVISION_TRIGGER_FACTOR = 1.5
MIN_ACCEPTED_SHARE = 0.5


class GenerationError(Exception):
    """A job that cannot produce any text.

    ``classification`` is ``provider_unavailable`` when a content-producing
    call exhausted its retries and ``assembly_failed`` when long-mode
    assembly returned nothing usable.
    """

    def __init__(self, classification: str, message: str) -> None:
        super().__init__(message)
        self.classification = classification

    def __str__(self) -> str:
        return f"{self.classification}: {self.args[0]}"


def select_mode(target_words: int) -> GenerationMode:
    if target_words > settings.LONG_MODE_THRESHOLD:
        return "long"
    if target_words > settings.ACT_SEGMENTATION_THRESHOLD:
        return "short-multi-act"
    return "short"


class StoryOrchestrator:
    """Run one generation request at a time through its mode's pipeline."""

    def __init__(
        self,
        provider: TextProvider,
        registry: ProfileRegistry | None = None,
        sink: ArtifactSink | None = None,
        on_step: Callable[[str], None] | None = None,
    ) -> None:
        self._provider = provider
        self._registry = registry or get_registry()
        self._sink = sink or ArtifactSink()
        self._on_step = on_step

    def _step(self, job: GenerationJob, name: str) -> None:
        logger.info("Pipeline step", story_id=job.job_id, mode=job.mode, step=name)
        if self._on_step:
            self._on_step(name)

    def create_job(self, request: GenerationRequest) -> GenerationJob:
        """Resolve profiles and derive the target; raises ProfileNotFoundError."""
        language = self._registry.language(request.language)
        genre = self._registry.genre(request.genre)
        if request.target_words:
            target_words = request.target_words
        else:
            wpm = language.words_per_minute or settings.DEFAULT_WORDS_PER_MINUTE
            target_words = round(request.target_minutes * wpm)
        job = GenerationJob(
            request=request,
            language=language,
            genre=genre,
            target_words=target_words,
            mode=select_mode(target_words),
            premise=sanitize_user_prompt(request.premise),
        )
        if request.story_id:
            job.job_id = request.story_id
        return job

    async def generate(self, request: GenerationRequest) -> GenerationResult:
        job = self.create_job(request)
        logger.info(
            "Starting story generation",
            story_id=job.job_id,
            language=job.language.code,
            genre=job.genre.code,
            target_words=job.target_words,
            mode=job.mode,
        )
        provider: TextProvider = self._provider
        if self._sink.enabled:
            provider = RecordingProvider(self._provider, self._sink, job.job_id)

        try:
            if job.mode == "short":
                await self._generate_short(job, provider)
            elif job.mode == "short-multi-act":
                await self._generate_short_multi_act(job, provider)
            else:
                await self._generate_long(job, provider)
        except ProviderError as exc:
            logger.error("Generation failed", story_id=job.job_id, error=str(exc))
            raise GenerationError("provider_unavailable", str(exc)) from exc

        result = self._finalize(job)
        logger.info(
            "Generation complete",
            story_id=job.job_id,
            duration_seconds=result.metadata.duration_seconds,
            actual_words=result.metadata.actual_words,
            passed=result.quality_report.passed,
        )
        return result

    # Modes

    async def _generate_short(self, job: GenerationJob, provider: TextProvider) -> None:
        self._step(job, "planner")
        planner = await self._plan(
            job,
            provider,
            target_words=job.target_words,
            temperature=job.genre.opening_temperature(),
            policy=PLANNING_POLICY,
            stage="planner",
        )
        job.outline = planner.outline
        job.titles = planner.titles
        job.synopsis = planner.synopsis
        logger.info(
            "Planner complete",
            words=count_words(planner.chapters, job.language.code),
            titles=len(planner.titles),
        )

        draft = strip_meta_lines(soft_dedupe(planner.chapters))
        draft = await self._revise_repetition(job, provider, draft)
        job.draft = await self._conditional_polish(job, provider, draft)
        await self._post_process(job, provider)

    async def _generate_short_multi_act(
        self, job: GenerationJob, provider: TextProvider
    ) -> None:
        total = act_count(job.target_words, job.mode)
        per_act = round(job.target_words / total)
        for number in range(1, total + 1):
            self._step(job, f"act {number}/{total} planner")
            planner = await self._plan(
                job,
                provider,
                target_words=per_act,
                temperature=job.genre.opening_temperature(),
                act_number=number,
                total_acts=total,
                context_summary=cumulative_context(job.acts) if job.acts else None,
                policy=LONG_PLANNING_POLICY,
                stage=f"act{number}_planner",
            )
            text = strip_meta_lines(soft_dedupe(planner.chapters))
            job.acts.append(
                Act(
                    index=number,
                    word_budget=per_act,
                    text=text,
                    summary=act_summary(text, job.language.code),
                    synopsis=planner.synopsis,
                )
            )
            if number == 1:
                job.titles = planner.titles
            logger.info(
                "Act complete", act=number, words=count_words(text, job.language.code)
            )

        job.outline = []
        job.synopsis = "\n\n".join(act.synopsis for act in job.acts)
        draft = strip_meta_lines(soft_dedupe("\n\n".join(act.text for act in job.acts)))
        job.draft = await self._revise_repetition(job, provider, draft)
        await self._post_process(job, provider)

    async def _generate_long(self, job: GenerationJob, provider: TextProvider) -> None:
        total = act_count(job.target_words, job.mode)
        per_act = round(job.target_words / total)
        job.ledger = PromiseLedger()
        outlines = []
        for number in range(1, total + 1):
            context = None
            if job.acts:
                context = scrub_motif_tokens(
                    job.ledger.context_summary(job.acts[-1].text), job.language.code
                )
            self._step(job, f"act {number}/{total} planner")
            planner = await self._plan(
                job,
                provider,
                target_words=per_act,
                temperature=act_temperature(number, total, job.genre),
                act_number=number,
                total_acts=total,
                context_summary=context,
                policy=LONG_PLANNING_POLICY,
                stage=f"act{number}_planner",
            )
            outlines.append(planner.outline)
            if number == 1:
                job.titles = planner.titles
            job.ledger.add_promises(planner.checklist, number)

            self._step(job, f"act {number}/{total} polish")
            polish = await self._polish_act(job, provider, planner, number)
            if polish is not None:
                job.ledger.update_resolutions(polish.notes.checklist_resolution)

            # The planner text is kept; polish only feeds the ledger.
            job.acts.append(
                Act(
                    index=number,
                    word_budget=per_act,
                    text=planner.chapters,
                    summary=act_summary(planner.chapters, job.language.code),
                    synopsis=planner.synopsis,
                )
            )

        logger.info("Promise ledger summary", **job.ledger.summary())
        job.outline = outlines

        self._step(job, "assembly")
        assembled = await self._assemble(job, provider)
        job.synopsis = assembled.metadata.get("synopsis") or "\n\n".join(
            act.synopsis for act in job.acts
        )
        job.draft = assembled.markdown
        await self._post_process(job, provider, recover_truncation=False, strip_meta=True)

    # Content-producing calls

    async def _plan(
        self,
        job: GenerationJob,
        provider: TextProvider,
        *,
        target_words: int,
        temperature: float,
        policy: RetryPolicy,
        stage: str,
        act_number: int | None = None,
        total_acts: int | None = None,
        context_summary: str | None = None,
    ) -> PlannerOutput:
        system_prompt, user_prompt = build_planner_prompt(
            job,
            target_words=target_words,
            act_number=act_number,
            total_acts=total_acts,
            context_summary=context_summary,
        )
        raw = await provider.call(
            system_prompt,
            user_prompt,
            temperature=temperature,
            model=settings.PLANNING_MODEL,
            retry_policy=policy,
            stage=stage,
        )
        return parse_planner_response(raw)

    async def _assemble(
        self, job: GenerationJob, provider: TextProvider
    ) -> AssemblerOutput:
        context = {
            "acts": [act.text for act in job.acts],
            "pov": job.pov,
            "tense": settings.POV_TENSE
            if settings.POV_TENSE in ("past", "present")
            else "consistent",
            "style_policy": settings.STYLE_POLICY,
            "genre_code": job.genre.code,
            "romance": job.genre.romance_safety or applies_to(job.genre),
            "target_words": job.target_words,
        }
        raw = await provider.call(
            render_prompt("assembler/system.j2", context),
            render_prompt("assembler/user.j2", context),
            temperature=Temperatures.ASSEMBLY,
            model=settings.PLANNING_MODEL,
            retry_policy=LONG_PLANNING_POLICY,
            stage="assembler",
        )
        if not raw or not raw.strip():
            raise GenerationError("assembly_failed", "No response from provider")
        assembled = parse_assembler_response(raw)
        if not assembled.markdown:
            raise GenerationError("assembly_failed", "Invalid response structure")
        logger.info(
            "Assembly complete",
            words=count_words(assembled.markdown, job.language.code),
        )
        return assembled

    # Corrective calls: each keeps the previous text on failure.

    async def _polish_act(
        self,
        job: GenerationJob,
        provider: TextProvider,
        planner: PlannerOutput,
        number: int,
    ) -> PolishOutput | None:
        stats = bigram_repetition(planner.chapters, job.language)
        context = {
            "outline": planner.outline,
            "checklist": planner.checklist,
            "chapters": planner.chapters,
            "language_rules": job.language.rules,
            "repeated_bigrams": [bigram for bigram, _ in stats.high_frequency[:10]],
            "romance": job.genre.romance_safety or applies_to(job.genre),
        }
        try:
            raw = await provider.call(
                render_prompt("polish/system.j2", context),
                render_prompt("polish/user.j2", context),
                temperature=Temperatures.LONG_POLISH,
                model=settings.POLISH_MODEL,
                prefill=POLISH_PREFILL,
                retry_policy=POLISH_POLICY,
                stage=f"act{number}_polish",
            )
        except ProviderError as exc:
            logger.warning("Act polish failed; ledger not updated", act=number, error=str(exc))
            return None
        return parse_polish_response(raw)

    async def _revise_repetition(
        self, job: GenerationJob, provider: TextProvider, text: str
    ) -> str:
        stats = bigram_repetition(text, job.language)
        threshold = quality_gate.repetition_threshold(job.genre)
        extreme = stats.rate >= threshold * settings.EXTREME_REPETITION_FACTOR
        if not extreme and stats.rate <= threshold * REVISION_TRIGGER_FACTOR:
            return text

        self._step(job, "revision")
        logger.warning(
            "Applying repetition revision",
            rate=round(stats.rate, 2),
            threshold=threshold,
            mode="extreme" if extreme else "reduce",
        )
        context = {
            "language_rules": job.language.rules,
            "repeat_list": ", ".join(
                f'"{item["bigram"]}" ({item["count"]}x)' for item in stats.top(15)
            ),
            "extreme": extreme,
            "repetition_max": threshold,
            "chapters": text,
        }
        try:
            raw = await provider.call(
                render_prompt("revision/system.j2", context),
                render_prompt("revision/user.j2", context),
                temperature=Temperatures.REVISION,
                model=settings.PLANNING_MODEL,
                retry_policy=REVISION_POLICY,
                stage="revision",
            )
        except ProviderError as exc:
            logger.warning("Revision failed, using original text", error=str(exc))
            return text

        revised = extract(raw, "CHAPTERS") or ""
        if count_words(revised, job.language.code) <= job.target_words * MIN_ACCEPTED_SHARE:
            logger.warning("Revision output too short; keeping original")
            return text
        revised = strip_meta_lines(revised)
        logger.info(
            "Revision applied", new_rate=round(bigram_repetition(revised, job.language).rate, 2)
        )
        return revised

    async def _conditional_polish(
        self, job: GenerationJob, provider: TextProvider, text: str
    ) -> str:
        mode = settings.POLISH_MODE
        if mode == "off":
            return text
        stats = bigram_repetition(text, job.language)
        threshold = quality_gate.repetition_threshold(job.genre)
        tolerance = settings.length_tolerance
        length = check_length(text, job.target_words, tolerance, job.language.code)
        missing = [ch.title for ch in extract_chapters(text) if not has_hook(ch.text)]
        reasons = {
            "repetition": stats.rate > threshold,
            "length": abs(length.ratio - 1.0) > tolerance,
            "hooks": bool(missing),
        }
        if mode != "always" and not any(reasons.values()):
            logger.info("Skipping polish; early metrics passed")
            return text

        self._step(job, "polish")
        logger.info("Applying conditional polish", reasons=reasons)
        context = {
            "language_rules": job.language.rules,
            "repeated_bigrams": [bigram for bigram, _ in stats.high_frequency[:10]],
            "missing_hooks": missing,
            "fix_repetition": reasons["repetition"],
            "enforce_hooks": reasons["hooks"],
            "fix_length": reasons["length"],
            "target_words": job.target_words,
            "chapters": text,
        }
        try:
            raw = await provider.call(
                render_prompt("patch_strict/system.j2", context),
                render_prompt("patch_strict/user.j2", context),
                temperature=Temperatures.PATCH,
                model=settings.POLISH_MODEL,
                retry_policy=POLISH_POLICY,
                stage="polish",
            )
        except ProviderError as exc:
            logger.warning("Polish failed, using planner text", error=str(exc))
            return text

        reason = quality_gate.validate_patch_response(
            raw, round(job.target_words * MIN_ACCEPTED_SHARE)
        )
        if reason:
            logger.warning("Polish response rejected", reason=reason)
            return text
        polished = parse_polish_response(raw).chapters
        if count_words(polished, job.language.code) <= job.target_words * MIN_ACCEPTED_SHARE:
            logger.warning("Polish output could not be parsed; using planner text")
            return text
        logger.info("Polish applied", words=count_words(polished, job.language.code))
        return strip_meta_lines(polished)

    async def _recover_continuation(
        self, job: GenerationJob, provider: TextProvider, text: str
    ) -> str:
        check = is_truncated(text, job.target_words, job.language.code)
        if not check.truncated:
            return text

        self._step(job, "continuation")
        logger.warning(
            "Text appears truncated; requesting continuation",
            reason=check.reason,
            missing_words=check.missing_words,
        )
        system_prompt, user_prompt = build_continuation_prompt(
            text, check.missing_words, job.language.name
        )
        try:
            raw = await provider.call(
                system_prompt,
                user_prompt,
                temperature=Temperatures.CONTINUATION,
                model=settings.PLANNING_MODEL,
                retry_policy=REVISION_POLICY,
                stage="continuation",
            )
        except ProviderError as exc:
            logger.warning("Continuation recovery failed, using original", error=str(exc))
            return text
        merged = merge_continuation(text, raw.strip())
        logger.info(
            "Continuation recovery complete",
            original_words=check.actual_words,
            final_words=count_words(merged, job.language.code),
        )
        return merged

    async def _enforce_hooks(
        self, job: GenerationJob, provider: TextProvider, text: str
    ) -> str:
        result = text
        for chapter in extract_chapters(text):
            if not chapter.text or has_hook(chapter.text):
                continue
            context = {"title": chapter.title, "text": chapter.text}
            try:
                raw = await provider.call(
                    render_prompt("hook_enforcer/system.j2", context),
                    render_prompt("hook_enforcer/user.j2", context),
                    temperature=Temperatures.HOOK,
                    model=settings.POLISH_MODEL,
                    retry_policy=POLISH_POLICY,
                    stage="hook",
                )
            except ProviderError as exc:
                logger.warning(
                    "Hook enforcement failed", chapter=chapter.title, error=str(exc)
                )
                continue
            hook = raw.strip()
            if hook:
                result = result.replace(chapter.text, f"{chapter.text}\n\n{hook}", 1)
                logger.info("Hook added", chapter=chapter.title)
        return result

    async def _apply_patch(self, job: GenerationJob, provider: TextProvider) -> bool:
        """Attempt the single corrective rewrite. Returns True when it was accepted."""
        report = job.report
        if report is None or report.passed or settings.POLISH_MODE == "off":
            return False

        threshold = quality_gate.repetition_threshold(job.genre)
        strategy = pick_patch(
            job.genre,
            report.metrics,
            PatchThresholds(
                repetition_max=threshold, max_avg_sentence=settings.MAX_AVG_SENTENCE
            ),
            pov=job.request.pov,
            audio_mode=job.request.audio_mode,
        )
        if strategy is None:
            logger.info("No suitable patch for gate failures", failures=report.failures)
            return False

        self._step(job, f"patch {strategy}")
        attempt = PatchAttempt(strategy=strategy, metrics_before=dict(report.metrics))
        job.patch_attempt = attempt
        prompts = build_patch_prompt(
            strategy,
            PatchContext(
                chapters=job.draft,
                language=job.language,
                genre=job.genre,
                metrics=report.metrics,
                repetition_max=threshold,
            ),
        )
        if prompts is None:
            attempt.validation = "no_template"
            return False

        system_prompt, user_prompt = prompts
        try:
            raw = await provider.call(
                system_prompt,
                user_prompt,
                temperature=Temperatures.PATCH,
                model=settings.POLISH_MODEL,
                retry_policy=POLISH_POLICY,
                stage=f"patch_{strategy}",
            )
        except ProviderError as exc:
            attempt.validation = f"provider_error: {exc}"
            logger.error("Patch failed, keeping current draft", strategy=strategy, error=str(exc))
            return False

        min_words = round(job.target_words * MIN_ACCEPTED_SHARE)
        attempt.validation = quality_gate.validate_patch_response(raw, min_words)
        if attempt.validation:
            logger.warning("Patch rejected", strategy=strategy, reason=attempt.validation)
            return False
        patched = extract(raw, "CHAPTERS") or ""
        if count_words(patched, job.language.code) <= min_words:
            attempt.validation = "unparseable_chapters"
            return False

        attempt.accepted = True
        job.draft = patched
        logger.info("Patch applied", strategy=strategy)
        return True

    # Shared tail

    def _evaluate(self, job: GenerationJob) -> None:
        config = quality_gate.GateConfig.for_genre(
            job.genre,
            premise=job.premise,
            pov=job.request.pov,
            audio_mode=job.request.audio_mode,
        )
        job.report = quality_gate.evaluate(
            job.draft, job.target_words, config, job.language, job.genre
        )
        logger.info(
            "Quality gate check",
            passed=job.report.passed,
            failures=job.report.failures,
        )

    async def _post_process(
        self,
        job: GenerationJob,
        provider: TextProvider,
        *,
        recover_truncation: bool = True,
        strip_meta: bool = False,
    ) -> None:
        if recover_truncation:
            job.draft = await self._recover_continuation(job, provider, job.draft)

        length = check_length(
            job.draft, job.target_words, settings.length_tolerance, job.language.code
        )
        if length.needs_adjustment and abs(length.difference) > settings.LENGTH_CORRECTION_MIN_WORDS:
            self._step(job, "length correction")
            job.draft = await correct_length(
                provider, job.draft, job.target_words - length.actual_words, job.target_words
            )

        if settings.HOOK_ENFORCE:
            self._step(job, "hooks")
            job.draft = await self._enforce_hooks(job, provider, job.draft)

        if strip_meta:
            job.draft = strip_meta_lines(job.draft)

        self._step(job, "quality gate")
        self._evaluate(job)
        if await self._apply_patch(job, provider):
            self._evaluate(job)

    def _finalize(self, job: GenerationJob) -> GenerationResult:
        summary = quality_gate.generate_quality_report(
            job.draft, job.target_words, job.language
        )
        ledger_summary = job.ledger.summary() if job.ledger else None
        if ledger_summary:
            summary["ledger"] = ledger_summary

        body = sanitize_control_markers(job.draft)
        body, sanitized = sanitize_romance(body, job.genre)
        if not job.request.audio_mode or job.mode == "long":
            body = strip_audio_beats(body)

        metadata = GenerationMetadata(
            story_id=job.job_id,
            language=job.language.code,
            genre=job.genre.code,
            target_words=job.target_words,
            actual_words=count_words(body, job.language.code),
            mode=job.mode,
            duration_seconds=round(job.elapsed, 1),
            sanitized=sanitized,
        )
        return GenerationResult(
            body_text=body,
            outline=job.outline,
            titles=job.titles,
            synopsis=job.synopsis,
            quality_report=job.report,
            summary_report=summary,
            patch_attempt=job.patch_attempt,
            ledger_summary=ledger_summary,
            metadata=metadata,
        )
