"""Per-question Well-Architected analysis of a stored document.

Walks the selected pillars and, within each, the taxonomy's question groups in
order. Every question costs one retrieval and one inference call. The run stops
at the first failing question; everything analysed up to that point is stored
as a partial result, so no completed work is lost. The work item never stays
IN_PROGRESS once ``analyze`` returns or raises.
"""

import asyncio
import logging
import uuid

from wafr_engine.core.cancellation import CancellationToken
from wafr_engine.core.errors import InputValidationError, RetrievalFailure, is_recoverable
from wafr_engine.core.llm import InferenceInvoker
from wafr_engine.core.logging import get_logger, log_with_context
from wafr_engine.core.progress import ProgressBroadcaster
from wafr_engine.core.prompts import build_analysis_system_prompt, build_analysis_user_prompt
from wafr_engine.core.response_parser import map_verdicts
from wafr_engine.core.retrieval import KnowledgeRetriever
from wafr_engine.core.schemas_analysis import (
    AnalysisOutcome,
    AnalysisProgressEvent,
    AnalysisResult,
    ProcessStatus,
    QuestionGroup,
)
from wafr_engine.db.work_items import DocumentStore
from wafr_engine.services.documents import LoadedDocument, load_document
from wafr_engine.services.taxonomy import TaxonomyCache

logger = get_logger(__name__)

CANCELLED_MESSAGE = "Analysis cancelled by user."


def percent(done: int, total: int) -> int:
    """Whole-number percentage, halves rounded up."""
    if total <= 0:
        return 0
    return int(done * 100 / total + 0.5)


class AnalysisOrchestrator:
    """Drives retrieval, inference and parsing for every selected question."""

    def __init__(
        self,
        store: DocumentStore,
        taxonomy: TaxonomyCache,
        retriever: KnowledgeRetriever,
        invoker: InferenceInvoker,
        progress: ProgressBroadcaster,
    ):
        self.store = store
        self.taxonomy = taxonomy
        self.retriever = retriever
        self.invoker = invoker
        self.progress = progress

    async def analyze(
        self,
        user_id: str,
        file_id: str,
        workload_id: str,
        selected_pillars: list[str],
        token: CancellationToken,
    ) -> AnalysisOutcome:
        """
        Analyse a document against the best practices of the selected pillars.

        Args:
            user_id: Caller identity
            file_id: Work item holding the document
            workload_id: Workload whose recorded answer ids label the results
            selected_pillars: Pillar slugs, processed in this order
            token: Cancellation token checked before every question

        Returns:
            Outcome with the results so far; ``error`` set when a question failed,
            ``is_cancelled`` set when the token fired

        Raises:
            InputValidationError: If identity, document or pillars are missing
            TaxonomyUnavailableError: If the taxonomy cannot be resolved
            WafrError / Exception: Unexpected failures, after partial results are stored
        """
        if not user_id:
            raise InputValidationError("User ID is required for analysis")
        if not selected_pillars:
            raise InputValidationError("At least one pillar must be selected")

        run_id = str(uuid.uuid4())
        document = await load_document(self.store, user_id, file_id)

        log_with_context(
            logger,
            logging.INFO,
            f"Starting analysis of {len(selected_pillars)} pillar(s)",
            run_id=run_id,
            user_id=user_id,
            file_id=file_id,
            pillars=selected_pillars,
            image=document.is_image,
        )

        await self.store.update_work_item(
            user_id,
            file_id,
            {
                "analysis_status": ProcessStatus.IN_PROGRESS.value,
                "analysis_progress": 0,
                "analysis_error": None,
                "analysis_partial_results": False,
            },
        )

        results: list[AnalysisResult] = []
        processed = 0
        total = 0

        try:
            await self.taxonomy.resolve(workload_id)

            # Grouping is independent per pillar; the total is known before the loop
            pillar_groups: list[list[QuestionGroup]] = await asyncio.gather(
                *(self.taxonomy.retrieve_best_practices(p, workload_id) for p in selected_pillars)
            )
            total = sum(len(groups) for groups in pillar_groups)

            for pillar, groups in zip(selected_pillars, pillar_groups):
                for group in groups:
                    if token.is_cancelled:
                        await self._store_partial(
                            user_id, file_id, results, processed, total, CANCELLED_MESSAGE
                        )
                        self._emit(user_id, processed, total, pillar, "Analysis cancelled")
                        log_with_context(
                            logger,
                            logging.INFO,
                            f"Analysis cancelled after {processed}/{total} questions",
                            run_id=run_id,
                            user_id=user_id,
                            file_id=file_id,
                        )
                        return AnalysisOutcome(
                            results=results,
                            is_cancelled=True,
                            file_id=file_id,
                            processed_questions=processed,
                            total_questions=total,
                        )

                    try:
                        passages = await self.retriever.retrieve(group.pillar, group.question_title)
                    except RetrievalFailure as e:
                        error = f"Error retrieving from knowledge base. Analysis stopped. {e}"
                        await self._store_partial(user_id, file_id, results, processed, total, error)
                        return AnalysisOutcome(
                            results=results,
                            error=error,
                            file_id=file_id,
                            processed_questions=processed,
                            total_questions=total,
                        )

                    self._emit(user_id, processed, total, pillar, group.question_title)

                    try:
                        result = await self._analyze_question(document, group, passages)
                    except Exception as e:
                        if not is_recoverable(e):
                            raise
                        error = (
                            f'{e}. Error analyzing question "{group.pillar} - {group.question_title}". '
                            f"Analysis stopped, {processed} questions were analyzed out of {total}."
                        )
                        log_with_context(
                            logger,
                            logging.ERROR,
                            error,
                            run_id=run_id,
                            user_id=user_id,
                            file_id=file_id,
                            error_type=type(e).__name__,
                        )
                        await self._store_partial(user_id, file_id, results, processed, total, error)
                        return AnalysisOutcome(
                            results=results,
                            error=error,
                            file_id=file_id,
                            processed_questions=processed,
                            total_questions=total,
                        )

                    results.append(result)
                    processed += 1

                    await self.store.update_work_item(
                        user_id, file_id, {"analysis_progress": percent(processed, total)}
                    )
                    self._emit(user_id, processed, total, pillar, group.question_title)

            await self.store.store_analysis_results(user_id, file_id, results)
            await self.store.update_work_item(
                user_id,
                file_id,
                {
                    "analysis_status": ProcessStatus.COMPLETED.value,
                    "analysis_progress": 100,
                    "analysis_partial_results": False,
                },
            )
            log_with_context(
                logger,
                logging.INFO,
                f"Analysis completed: {processed} questions",
                run_id=run_id,
                user_id=user_id,
                file_id=file_id,
            )
            return AnalysisOutcome(
                results=results,
                file_id=file_id,
                processed_questions=processed,
                total_questions=total,
            )

        except Exception as e:
            logger.exception(
                f"Analysis failed unexpectedly: {e}",
                extra={"run_id": run_id, "user_id": user_id, "file_id": file_id},
            )
            await self._close_after_error(user_id, file_id, results, processed, total, str(e))
            raise

    async def _analyze_question(
        self, document: LoadedDocument, group: QuestionGroup, passages: list[str]
    ) -> AnalysisResult:
        if document.is_image:
            system_prompt = build_analysis_system_prompt(group)
            user_prompt = build_analysis_user_prompt(group, passages, is_image=True)
            payload = await self.invoker.invoke_verdicts(system_prompt, user_prompt, image=document.content)
        else:
            system_prompt = build_analysis_system_prompt(group, document=document.content)
            user_prompt = build_analysis_user_prompt(group, passages, is_image=False)
            payload = await self.invoker.invoke_verdicts(system_prompt, user_prompt)

        return AnalysisResult(
            pillar=group.pillar,
            question=group.question_title,
            question_id=group.question_id,
            best_practices=map_verdicts(payload, group),
        )

    def _emit(self, user_id: str, processed: int, total: int, pillar: str, question: str) -> None:
        self.progress.emit_analysis_progress(
            user_id,
            AnalysisProgressEvent(
                processed_questions=processed,
                total_questions=total,
                current_pillar=pillar,
                current_question=question,
            ),
        )

    async def _store_partial(
        self,
        user_id: str,
        file_id: str,
        results: list[AnalysisResult],
        processed: int,
        total: int,
        error: str,
        status: ProcessStatus = ProcessStatus.PARTIAL,
    ) -> None:
        """Persist results so far and close the work item with an error."""
        if results:
            await self.store.store_analysis_results(user_id, file_id, results)

        await self.store.update_work_item(
            user_id,
            file_id,
            {
                "analysis_status": status.value,
                "analysis_progress": percent(processed, total),
                "analysis_error": error,
                "analysis_partial_results": bool(results),
            },
        )

    async def _close_after_error(
        self,
        user_id: str,
        file_id: str,
        results: list[AnalysisResult],
        processed: int,
        total: int,
        error: str,
    ) -> None:
        """Best-effort final write before an unexpected error propagates."""
        try:
            status = ProcessStatus.PARTIAL if results else ProcessStatus.FAILED
            await self._store_partial(user_id, file_id, results, processed, total, error, status)
        except Exception as store_error:
            logger.error(
                f"Could not record failed analysis state: {store_error}",
                extra={"user_id": user_id, "file_id": file_id},
            )
