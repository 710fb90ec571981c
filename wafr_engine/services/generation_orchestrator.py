"""Section-by-section IaC document generation from an architecture diagram.

Each turn sends the diagram, the recommendations and every section produced so
far; the model answers with further ``# Section N - ...`` blocks and finally the
end-of-generation marker. Partial documents are checkpointed after every turn.
"""

import asyncio
import logging
import uuid
from typing import Any

from wafr_engine.core.cancellation import CancellationToken
from wafr_engine.core.config import Settings, get_settings
from wafr_engine.core.errors import InputValidationError, is_recoverable
from wafr_engine.core.llm import InferenceInvoker
from wafr_engine.core.logging import get_logger, log_with_context
from wafr_engine.core.progress import ProgressBroadcaster
from wafr_engine.core.prompts import build_iac_system_prompt, build_iac_user_prompt
from wafr_engine.core.response_parser import assemble_sections, iac_extension, parse_section_response
from wafr_engine.core.schemas_analysis import ProcessStatus
from wafr_engine.core.schemas_iac import (
    DocumentSection,
    GenerationOutcome,
    IaCTemplateType,
    ImplementationProgressEvent,
)
from wafr_engine.db.work_items import DocumentStore
from wafr_engine.services.documents import load_document

logger = get_logger(__name__)

CANCELLATION_NOTE = "# Note: Template generation was cancelled. Below is a partial version.\n\n"
ERROR_NOTE = "# Note: Template generation encountered an error. Below is a partial version.\n\n"
MAX_ITERATIONS_ERROR = "exceeded max iterations"


def estimate_progress(section_count: int) -> int:
    """Progress reported for a partial document, assuming about ten sections."""
    return min(int(section_count / 10 * 100 + 0.5), 99)


class GenerationOrchestrator:
    """Multi-turn IaC generation with cancellation, checkpoints and an iteration ceiling."""

    def __init__(
        self,
        store: DocumentStore,
        invoker: InferenceInvoker,
        progress: ProgressBroadcaster,
        settings: Settings | None = None,
    ):
        self.store = store
        self.invoker = invoker
        self.progress = progress
        self.settings = settings or get_settings()

    async def generate(
        self,
        user_id: str,
        file_id: str,
        recommendations: list[dict[str, Any]],
        template_type: IaCTemplateType | str,
        token: CancellationToken,
    ) -> GenerationOutcome:
        """
        Generate an IaC document for a stored architecture diagram.

        Returns:
            Outcome with the ordered document; partial content when cancelled,
            when a turn failed after some sections were produced, or when the
            iteration ceiling was reached

        Raises:
            InputValidationError: Missing identity or a non-image document
            WafrError / Exception: A failure before any section was produced, or a
                storage failure, after the work item is closed
        """
        if not user_id:
            raise InputValidationError("User ID is required for IaC generation")

        template = template_type.value if isinstance(template_type, IaCTemplateType) else template_type
        document = await load_document(self.store, user_id, file_id)
        if not document.is_image:
            raise InputValidationError("This operation is only supported for architecture diagrams")

        run_id = str(uuid.uuid4())
        extension = iac_extension(template)
        system_prompt = build_iac_system_prompt(template)
        storage_enabled = self.settings.STORAGE_ENABLED
        max_iterations = self.settings.IAC_MAX_ITERATIONS

        log_with_context(
            logger,
            logging.INFO,
            f"Starting {template} generation",
            run_id=run_id,
            user_id=user_id,
            file_id=file_id,
            recommendations=len(recommendations),
        )

        await self.store.update_work_item(
            user_id,
            file_id,
            {
                "iac_generation_status": ProcessStatus.IN_PROGRESS.value,
                "iac_generation_progress": 0,
                "iac_generation_error": None,
                "iac_partial_results": False,
            },
        )

        sections: list[DocumentSection] = []
        iteration = 0
        is_complete = False

        try:
            while not is_complete:
                if iteration >= max_iterations:
                    return await self._exceeded(user_id, file_id, sections, extension, template, run_id)

                try:
                    progress = min(iteration * 10, 90)
                    self._emit(user_id, "Generating IaC document...", progress)
                    if storage_enabled:
                        await self.store.update_work_item(
                            user_id, file_id, {"iac_generation_progress": progress}
                        )

                    iteration += 1
                    user_prompt = build_iac_user_prompt(recommendations, sections)
                    text = await self.invoker.invoke_cancellable(
                        token, system_prompt, user_prompt, image=document.content
                    )

                    if text is None:
                        return await self._cancelled(user_id, file_id, sections, extension, template, run_id)

                    batch = parse_section_response(text)
                    sections.extend(batch.sections)
                    is_complete = batch.is_complete

                    logger.debug(
                        f"Turn {iteration}: {len(batch.sections)} new section(s), complete={is_complete}",
                        extra={"run_id": run_id},
                    )

                    if not is_complete:
                        if sections and storage_enabled:
                            await self.store.store_iac_document(
                                user_id, file_id, assemble_sections(sections), extension, template
                            )
                        await asyncio.sleep(self.settings.GENERATION_PACING_SECONDS)

                except Exception as e:
                    logger.exception(
                        f"IaC generation turn {iteration} failed: {e}",
                        extra={"run_id": run_id, "user_id": user_id, "file_id": file_id},
                    )
                    if not sections or not is_recoverable(e):
                        raise
                    return await self._errored(user_id, file_id, sections, extension, template, e)

            self._emit(user_id, "Finalizing IaC document...", 100)
            content = assemble_sections(sections)

            if storage_enabled:
                await self.store.store_iac_document(user_id, file_id, content, extension, template)
            await self.store.update_work_item(
                user_id,
                file_id,
                {
                    "iac_generation_status": ProcessStatus.COMPLETED.value,
                    "iac_generation_progress": 100,
                    "iac_generated_file_type": template,
                },
            )

        except Exception as e:
            await self._close_after_error(user_id, file_id, sections, extension, template, str(e))
            raise

        log_with_context(
            logger,
            logging.INFO,
            f"IaC generation completed with {len(sections)} sections in {iteration} turns",
            run_id=run_id,
            user_id=user_id,
            file_id=file_id,
        )
        return GenerationOutcome(content=content, file_id=file_id)

    def _emit(self, user_id: str, status: str, progress: int) -> None:
        self.progress.emit_implementation_progress(
            user_id, ImplementationProgressEvent(status=status, progress=progress)
        )

    async def _store_partial(
        self,
        user_id: str,
        file_id: str,
        sections: list[DocumentSection],
        content: str,
        extension: str,
        template: str,
        status: ProcessStatus,
        error: str,
    ) -> None:
        if sections and self.settings.STORAGE_ENABLED:
            await self.store.store_iac_document(user_id, file_id, content, extension, template)
        await self.store.update_work_item(
            user_id,
            file_id,
            {
                "iac_generation_status": status.value,
                "iac_generation_progress": estimate_progress(len(sections)),
                "iac_generation_error": error,
                "iac_partial_results": bool(sections),
                "iac_generated_file_type": template,
            },
        )

    async def _cancelled(
        self,
        user_id: str,
        file_id: str,
        sections: list[DocumentSection],
        extension: str,
        template: str,
        run_id: str,
    ) -> GenerationOutcome:
        content = assemble_sections(sections, note=CANCELLATION_NOTE)
        await self._store_partial(
            user_id,
            file_id,
            sections,
            content,
            extension,
            template,
            ProcessStatus.PARTIAL,
            "Generation cancelled by user",
        )
        log_with_context(
            logger,
            logging.INFO,
            f"IaC generation cancelled with {len(sections)} sections",
            run_id=run_id,
            user_id=user_id,
            file_id=file_id,
        )
        return GenerationOutcome(
            content=content,
            is_cancelled=True,
            file_id=file_id,
            status=ProcessStatus.PARTIAL.value,
        )

    async def _errored(
        self,
        user_id: str,
        file_id: str,
        sections: list[DocumentSection],
        extension: str,
        template: str,
        error: Exception,
    ) -> GenerationOutcome:
        content = assemble_sections(sections, note=ERROR_NOTE)
        await self._store_partial(
            user_id, file_id, sections, content, extension, template, ProcessStatus.PARTIAL, str(error)
        )
        return GenerationOutcome(
            content=content,
            error=f"Template generation encountered an error. Showing partial results. {error}",
            file_id=file_id,
            status=ProcessStatus.PARTIAL.value,
        )

    async def _exceeded(
        self,
        user_id: str,
        file_id: str,
        sections: list[DocumentSection],
        extension: str,
        template: str,
        run_id: str,
    ) -> GenerationOutcome:
        content = assemble_sections(sections, note=ERROR_NOTE) if sections else ""
        await self._store_partial(
            user_id,
            file_id,
            sections,
            content,
            extension,
            template,
            ProcessStatus.FAILED,
            MAX_ITERATIONS_ERROR,
        )
        log_with_context(
            logger,
            logging.WARNING,
            f"IaC generation stopped after {self.settings.IAC_MAX_ITERATIONS} turns without completion",
            run_id=run_id,
            user_id=user_id,
            file_id=file_id,
        )
        return GenerationOutcome(
            content=content,
            error=MAX_ITERATIONS_ERROR,
            file_id=file_id,
            status=ProcessStatus.FAILED.value,
        )

    async def _close_after_error(
        self,
        user_id: str,
        file_id: str,
        sections: list[DocumentSection],
        extension: str,
        template: str,
        error: str,
    ) -> None:
        """Best-effort final write before an unexpected error propagates."""
        kept = False
        if sections:
            try:
                if self.settings.STORAGE_ENABLED:
                    content = assemble_sections(sections, note=ERROR_NOTE)
                    await self.store.store_iac_document(user_id, file_id, content, extension, template)
                kept = True
            except Exception as store_error:
                logger.error(
                    f"Could not store partial IaC document: {store_error}",
                    extra={"user_id": user_id, "file_id": file_id},
                )

        status = ProcessStatus.PARTIAL if kept else ProcessStatus.FAILED
        try:
            await self.store.update_work_item(
                user_id,
                file_id,
                {
                    "iac_generation_status": status.value,
                    "iac_generation_progress": estimate_progress(len(sections)),
                    "iac_generation_error": error,
                    "iac_partial_results": kept,
                },
            )
        except Exception as store_error:
            logger.error(
                f"Could not record failed generation state: {store_error}",
                extra={"user_id": user_id, "file_id": file_id},
            )
