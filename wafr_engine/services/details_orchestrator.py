"""Detailed implementation guidance for best practices a review found missing.

Every selected, not-applied verdict gets its own multi-turn conversation that
runs until the model emits the end-of-details marker. A failing item is skipped;
the combined answer then carries a warning instead of failing the whole request.
"""

import asyncio
from typing import Any

from wafr_engine.core.config import Settings, get_settings
from wafr_engine.core.errors import InferenceFailure, InputValidationError
from wafr_engine.core.llm import InferenceInvoker
from wafr_engine.core.logging import get_logger
from wafr_engine.core.progress import ProgressBroadcaster
from wafr_engine.core.prompts import build_details_system_prompt, build_details_user_prompt
from wafr_engine.core.response_parser import parse_details_response
from wafr_engine.core.schemas_iac import DetailsOutcome, IaCTemplateType, ImplementationProgressEvent
from wafr_engine.db.work_items import DocumentStore
from wafr_engine.services.documents import LoadedDocument, load_document

logger = get_logger(__name__)

ITEM_SEPARATOR = "\n\n---\n\n"
PARTIAL_WARNING = "Some items could not be analyzed. Showing partial results."


class DetailsOrchestrator:
    """Runs the per-item details loop over a stored document."""

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

    async def get_more_details(
        self,
        user_id: str,
        file_id: str,
        selected_items: list[dict[str, Any]],
        template_type: IaCTemplateType | str | None = None,
    ) -> DetailsOutcome:
        """
        Produce markdown guidance for every selected best practice not yet applied.

        Raises:
            InputValidationError: No items selected, none of them missing, or no identity
            InferenceFailure: No item produced any output
        """
        if not selected_items:
            raise InputValidationError("No items selected for detailed analysis")
        if not user_id or not file_id:
            raise InputValidationError("File ID and User ID are required")

        items = [item for item in selected_items if not item.get("applied")]
        if not items:
            raise InputValidationError("All selected best practices are already applied")

        template = template_type.value if isinstance(template_type, IaCTemplateType) else template_type
        document = await load_document(self.store, user_id, file_id)
        system_prompt = build_details_system_prompt(template, is_image=document.is_image)

        total = len(items)
        self._emit(user_id, self._status(1, total, items[0]), 0)

        details: list[str] = []
        had_error = False

        for index, item in enumerate(items, start=1):
            try:
                item_details, complete = await self._details_for_item(document, system_prompt, item)
            except Exception as e:
                logger.error(
                    f"Error analyzing item {index} ({item.get('name', '?')}): {e}",
                    extra={"user_id": user_id, "file_id": file_id},
                )
                had_error = True
                continue

            if not complete:
                logger.warning(
                    f"Details of item {index} not completed within {self.settings.DETAILS_MAX_TURNS} turns",
                    extra={"user_id": user_id, "file_id": file_id},
                )
                had_error = True

            if item_details:
                details.append(item_details)
            self._emit(user_id, self._status(index, total, item), round(index / total * 100))

        self._emit(user_id, "Analysis complete", 100)

        if not details:
            raise InferenceFailure("Failed to generate any detailed analysis")

        content = ITEM_SEPARATOR.join(details)
        if had_error:
            return DetailsOutcome(content=content, error=PARTIAL_WARNING)
        return DetailsOutcome(content=content)

    async def _details_for_item(
        self, document: LoadedDocument, system_prompt: str, item: dict[str, Any]
    ) -> tuple[str, bool]:
        """Accumulate one item's turns; returns (markdown, completed)."""
        accumulated = ""

        for _ in range(self.settings.DETAILS_MAX_TURNS):
            if document.is_image:
                user_prompt = build_details_user_prompt(item, accumulated)
                text = await self.invoker.invoke(system_prompt, user_prompt, image=document.content)
            else:
                user_prompt = build_details_user_prompt(item, accumulated, document=document.content)
                text = await self.invoker.invoke(system_prompt, user_prompt)

            chunk = parse_details_response(text)
            accumulated += chunk.content
            if chunk.is_complete:
                return accumulated.strip(), True

            await asyncio.sleep(self.settings.GENERATION_PACING_SECONDS)

        return accumulated.strip(), False

    @staticmethod
    def _status(position: int, total: int, item: dict[str, Any]) -> str:
        return (
            f"Analyzing {position} of {total} selected best practices not applied - "
            f"Best practice: '{item.get('name', '')}'"
        )

    def _emit(self, user_id: str, status: str, progress: int) -> None:
        self.progress.emit_implementation_progress(
            user_id, ImplementationProgressEvent(status=status, progress=progress)
        )
