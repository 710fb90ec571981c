"""Process-lifetime cache of the best-practice taxonomy, keyed by workload.

Each workload gets its own enriched copy: base taxonomy entries whose question
and best-practice ids come from the workload's recorded answers, or from a
deterministic slug when the workload has no matching answer. Entries stay cached
until ``invalidate`` is called.
"""

import asyncio
import re
from collections.abc import Callable

from wafr_engine.core.errors import TaxonomyUnavailableError
from wafr_engine.core.logging import get_logger
from wafr_engine.core.schemas_analysis import BestPracticeRecord, QuestionGroup, TaxonomyEntry
from wafr_engine.db.taxonomy_source import fetch_base_taxonomy
from wafr_engine.services.workload_answers import WorkloadAnswers, WorkloadAnswersClient

logger = get_logger(__name__)

# Separator of the (question title, choice title) lookup key
KEY_SEPARATOR = "|||"


def generate_fallback_id(name: str) -> str:
    """Lowercase slug with non-alphanumeric runs collapsed to single hyphens."""
    return re.sub(r"[^a-z0-9]+", "-", name.lower()).strip("-")


def pillar_slug(pillar: str) -> str:
    return re.sub(r"\s+", "-", pillar.lower())


def build_id_maps(answers: WorkloadAnswers) -> tuple[dict[str, str], dict[str, str]]:
    """
    Index recorded answers by title.

    Returns:
        (question title -> question id, "question|||choice" -> choice id)
    """
    question_ids: dict[str, str] = {}
    choice_ids: dict[str, str] = {}

    for answer in answers.answer_summaries:
        question_title = answer.get("QuestionTitle")
        if question_title and answer.get("QuestionId"):
            question_ids[question_title] = answer["QuestionId"]

        # Best-practice titles repeat across questions, so the key includes the question
        for choice in answer.get("Choices") or []:
            if choice.get("Title") and choice.get("ChoiceId"):
                choice_ids[f"{question_title}{KEY_SEPARATOR}{choice['Title']}"] = choice["ChoiceId"]

    return question_ids, choice_ids


def enrich_taxonomy(
    entries: list[TaxonomyEntry], answers: WorkloadAnswers
) -> list[BestPracticeRecord]:
    """Attach live or fallback ids to every taxonomy entry."""
    question_ids, choice_ids = build_id_maps(answers)

    records = []
    for entry in entries:
        key = f"{entry.question}{KEY_SEPARATOR}{entry.best_practice}"
        records.append(
            BestPracticeRecord(
                pillar=entry.pillar,
                question_title=entry.question,
                question_id=question_ids.get(entry.question)
                or generate_fallback_id(entry.question),
                practice_name=entry.best_practice,
                practice_id=choice_ids.get(key)
                or generate_fallback_id(f"{entry.question}-{entry.best_practice}"),
            )
        )
    return records


def group_by_question(records: list[BestPracticeRecord], pillar_id: str) -> list[QuestionGroup]:
    """Question groups of one pillar, in first-seen question and practice order."""
    pillar_records = [r for r in records if pillar_slug(r.pillar) == pillar_id]
    if not pillar_records:
        return []

    groups: dict[str, QuestionGroup] = {}
    for record in pillar_records:
        group = groups.get(record.question_title)
        if group is None:
            group = QuestionGroup(
                pillar=pillar_records[0].pillar,
                question_title=record.question_title,
                question_id=record.question_id,
            )
            groups[record.question_title] = group
        group.ordered_practice_names.append(record.practice_name)
        group.ordered_practice_ids.append(record.practice_id)

    return list(groups.values())


class TaxonomyCache:
    """Enriched taxonomy per workload id, built once and reused across runs."""

    def __init__(
        self,
        answers_client: WorkloadAnswersClient,
        source: Callable[[], list[TaxonomyEntry]] = fetch_base_taxonomy,
    ):
        self.answers_client = answers_client
        self.source = source
        self._base: list[TaxonomyEntry] | None = None
        self._by_workload: dict[str, list[BestPracticeRecord]] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    def _lock_for(self, workload_id: str) -> asyncio.Lock:
        if workload_id not in self._locks:
            self._locks[workload_id] = asyncio.Lock()
        return self._locks[workload_id]

    async def _load_base(self) -> list[TaxonomyEntry]:
        if self._base is None:
            try:
                self._base = await asyncio.to_thread(self.source)
            except TaxonomyUnavailableError:
                raise
            except Exception as e:
                logger.error(f"Error loading best practices: {e}")
                raise TaxonomyUnavailableError(
                    "Failed to load Well-Architected best practices", cause=e
                ) from e
        return self._base

    async def resolve(self, workload_id: str) -> list[BestPracticeRecord]:
        """
        Enriched taxonomy of a workload, loading it on first use.

        Raises:
            TaxonomyUnavailableError: If the taxonomy or the answer listing cannot be fetched
        """
        cached = self._by_workload.get(workload_id)
        if cached is not None:
            return cached

        async with self._lock_for(workload_id):
            cached = self._by_workload.get(workload_id)
            if cached is not None:
                return cached

            base = await self._load_base()
            answers = await self.answers_client.list_answers(workload_id)
            records = enrich_taxonomy(base, answers)
            self._by_workload[workload_id] = records

            logger.info(
                f"Cached {len(records)} best practices for workload '{workload_id or '-'}' "
                f"({len(answers.answer_summaries)} recorded answers)"
            )
            return records

    async def retrieve_best_practices(self, pillar_id: str, workload_id: str) -> list[QuestionGroup]:
        """Question groups of a pillar slug (e.g. ``operational-excellence``)."""
        records = await self.resolve(workload_id)
        return group_by_question(records, pillar_id)

    def invalidate(self, workload_id: str | None = None) -> None:
        """Drop one workload's entries, or everything (base taxonomy included) when None."""
        if workload_id is None:
            self._base = None
            self._by_workload.clear()
            logger.info("Invalidated best-practice taxonomy cache")
        else:
            self._by_workload.pop(workload_id, None)
            logger.info(f"Invalidated cached best practices of workload '{workload_id}'")
