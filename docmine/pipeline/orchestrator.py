"""Pipeline orchestrator: run configured steps in order against one context.

Per run the status moves ``created -> running -> completed | failed``. A
run only ends ``failed`` when ``stopOnError`` is set and a step exhausts
its retries. Otherwise failures are recorded and the next step runs; such
a run is ``completed`` with ``success=False``.
"""

from __future__ import annotations

import dataclasses
import time
from collections.abc import Callable
from datetime import datetime

from docmine.lib.log import bind_run, get_logger
from docmine.lib.timestamps import utcnow
from docmine.pipeline.config import PipelineConfig
from docmine.pipeline.context import PipelineContext
from docmine.pipeline.factory import StepRegistry
from docmine.pipeline.models import PipelineError, PipelineResult, RunStatus, StepRun
from docmine.pipeline.retry import RetryingCall
from docmine.pipeline.runlog import RunLogRecorder
from docmine.pipeline.steps.base import PipelineStep, StepServices

logger = get_logger(__name__)


def _elapsed_ms(start: float) -> int:
    return int((time.perf_counter() - start) * 1000)


class PipelineOrchestrator:
    def __init__(
        self,
        config: PipelineConfig,
        registry: StepRegistry,
        services: StepServices,
        *,
        run_log: RunLogRecorder | None = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.config = config
        self.registry = registry
        self.services = dataclasses.replace(services, enable_caching=config.performance.enable_caching)
        self.run_log = run_log
        self._sleep = sleep
        self._clock = clock
        self.steps = self._build_steps()

    def _build_steps(self) -> list[PipelineStep]:
        """Instantiate enabled steps in declared order.

        Unknown step types are skipped with a warning; a step that rejects
        its configuration raises ``StepConfigError``.
        """
        steps: list[PipelineStep] = []
        for step_config in self.config.steps:
            if not step_config.enabled:
                logger.debug("step disabled", step_id=step_config.step_id)
                continue
            if not self.registry.has(step_config.step_type):
                logger.warning(
                    "unknown step type, skipping",
                    step_id=step_config.step_id,
                    step_type=step_config.step_type,
                )
                continue
            steps.append(self.registry.create(step_config, self.services))
        logger.info(
            "pipeline assembled",
            pipeline_id=self.config.pipeline_id,
            steps=[step.step_id for step in steps],
        )
        return steps

    def execute(self, context: PipelineContext) -> PipelineResult:
        error_handling = self.config.error_handling
        status = RunStatus.CREATED
        started = time.perf_counter()
        step_runs: list[StepRun] = []
        run_errors: list[PipelineError] = []

        # A disabled filter step means "keep everything".
        if not context.filtered_messages:
            context.filtered_messages = list(context.messages)

        with bind_run(
            batch_id=context.batch_id,
            instance_id=context.instance_id,
            pipeline_id=self.config.pipeline_id,
        ):
            run_id = self.run_log.start(context, self.config.pipeline_id, self._clock()) if self.run_log else None
            status = RunStatus.RUNNING
            logger.info("pipeline started", messages=len(context.messages), run_id=run_id)

            for step in self.steps:
                step_run = self._run_step(step, context)
                step_runs.append(step_run)
                if step_run.status == RunStatus.FAILED.value:
                    error = PipelineError(
                        step_id=step.step_id,
                        message=f"Step execution failed: {step_run.error}",
                        context={
                            "batchId": context.batch_id,
                            "instanceId": context.instance_id,
                            "stepType": step.step_type,
                            "attempts": step_run.attempts,
                        },
                    )
                    run_errors.append(error)
                    context.errors.append(error)
                    if error_handling.stop_on_error:
                        logger.error("stopping pipeline on error", step_id=step.step_id)
                        status = RunStatus.FAILED
                        break

            if status is RunStatus.RUNNING:
                status = RunStatus.COMPLETED

            context.metrics.total_duration_ms = _elapsed_ms(started)
            if context.metrics.total_duration_ms > self.config.performance.timeout_ms:
                logger.warning(
                    "pipeline exceeded configured timeout",
                    duration_ms=context.metrics.total_duration_ms,
                    timeout_ms=self.config.performance.timeout_ms,
                )
            if self.run_log:
                self.run_log.finish(run_id, context, status=status, steps=step_runs, completed_at=self._clock())

            result = PipelineResult(
                success=not context.errors,
                status=status,
                messages_processed=len(context.filtered_messages),
                threads_created=len(context.threads),
                proposals_generated=context.proposal_count(),
                errors=list(context.errors),
                metrics=context.metrics,
                steps=step_runs,
                run_id=run_id,
            )
            logger.info(
                "pipeline finished",
                status=status.value,
                success=result.success,
                step_failures=len(run_errors),
                errors=len(result.errors),
                threads=result.threads_created,
                proposals=result.proposals_generated,
                duration_ms=context.metrics.total_duration_ms,
            )
            return result

    def _run_step(self, step: PipelineStep, context: PipelineContext) -> StepRun:
        input_count = step.count_input(context)
        retrying = RetryingCall(
            self.config.error_handling.retry_attempts,
            self.config.error_handling.retry_delay_ms,
            sleep=self._sleep,
            label=step.step_id,
        )
        logger.info("step started", step_id=step.step_id, step_type=step.step_type, input=input_count)
        started = time.perf_counter()
        try:
            retrying(lambda: step.execute(context))
        except Exception as exc:
            duration_ms = _elapsed_ms(started)
            context.metrics.step_durations[step.step_id] = duration_ms
            logger.error(
                "step failed",
                step_id=step.step_id,
                attempts=retrying.attempts,
                error=str(exc),
                exc_info=True,
            )
            return StepRun(
                step_id=step.step_id,
                step_type=step.step_type,
                status=RunStatus.FAILED.value,
                input_count=input_count,
                duration_ms=duration_ms,
                attempts=retrying.attempts,
                error=str(exc),
            )

        duration_ms = _elapsed_ms(started)
        context.metrics.step_durations[step.step_id] = duration_ms
        output_count = step.count_output(context)
        logger.info("step completed", step_id=step.step_id, output=output_count, duration_ms=duration_ms)
        return StepRun(
            step_id=step.step_id,
            step_type=step.step_type,
            status=RunStatus.COMPLETED.value,
            input_count=input_count,
            output_count=output_count,
            duration_ms=duration_ms,
            attempts=retrying.attempts,
        )


__all__ = ["PipelineOrchestrator"]
