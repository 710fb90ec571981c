"""Tests for taxonomy enrichment, question grouping and the per-workload cache."""

import asyncio
from unittest.mock import MagicMock

import pytest

from wafr_engine.core.errors import TaxonomyUnavailableError
from wafr_engine.core.schemas_analysis import TaxonomyEntry
from wafr_engine.services.taxonomy import (
    TaxonomyCache,
    enrich_taxonomy,
    generate_fallback_id,
    group_by_question,
    pillar_slug,
)
from wafr_engine.services.workload_answers import WorkloadAnswers

from tests.fakes.fake_services import FakeAnswersClient
from tests.fixtures_wafr import OPS, OPS_QUESTIONS, SEC_QUESTIONS, TAXONOMY

PRIORITIES = "How do you determine what your priorities are?"

ANSWERS = [
    {
        "QuestionId": "priorities",
        "QuestionTitle": PRIORITIES,
        "Choices": [
            {"ChoiceId": "ops_priorities_ext_cust_needs", "Title": "Evaluate external customer needs"},
        ],
    }
]


class TestFallbackIds:
    def test_slug(self):
        assert generate_fallback_id("Foo Bar!") == "foo-bar"

    def test_collapses_runs_and_trims(self):
        assert generate_fallback_id("  --How do you (really) know?  ") == "how-do-you-really-know"

    def test_idempotent(self):
        once = generate_fallback_id("Evaluate external customer needs")
        assert generate_fallback_id(once) == once

    def test_pillar_slug(self):
        assert pillar_slug("Operational Excellence") == "operational-excellence"


class TestEnrichment:
    def test_live_ids_win_over_fallback(self):
        records = enrich_taxonomy(TAXONOMY, WorkloadAnswers(workload_id="w1", answer_summaries=ANSWERS))

        first, second = records[0], records[1]
        assert first.question_id == "priorities"
        assert first.practice_id == "ops_priorities_ext_cust_needs"
        assert second.question_id == "priorities"
        assert second.practice_id == generate_fallback_id(f"{PRIORITIES}-Evaluate internal customer needs")

    def test_without_answers_everything_falls_back(self):
        records = enrich_taxonomy(TAXONOMY, WorkloadAnswers(workload_id=""))

        assert all(r.question_id == generate_fallback_id(r.question_title) for r in records)
        assert len({r.practice_id for r in records}) == len(records)

    def test_duplicate_practice_titles_use_question_scoped_keys(self):
        entries = [
            TaxonomyEntry(pillar=OPS, question="Question one?", best_practice="Use automation"),
            TaxonomyEntry(pillar=OPS, question="Question two?", best_practice="Use automation"),
        ]
        answers = WorkloadAnswers(
            workload_id="w1",
            answer_summaries=[
                {
                    "QuestionId": "q1",
                    "QuestionTitle": "Question one?",
                    "Choices": [{"ChoiceId": "q1_automation", "Title": "Use automation"}],
                }
            ],
        )

        records = enrich_taxonomy(entries, answers)

        assert records[0].practice_id == "q1_automation"
        assert records[1].practice_id == "question-two-use-automation"


class TestGroupByQuestion:
    def test_groups_are_aligned_and_ordered(self):
        records = enrich_taxonomy(TAXONOMY, WorkloadAnswers(workload_id=""))

        groups = group_by_question(records, "operational-excellence")

        assert [g.question_title for g in groups] == list(OPS_QUESTIONS)
        for group in groups:
            assert len(group.ordered_practice_names) == len(group.ordered_practice_ids)
            assert group.ordered_practice_names == OPS_QUESTIONS[group.question_title]
            for name, practice_id in zip(group.ordered_practice_names, group.ordered_practice_ids):
                assert practice_id == generate_fallback_id(f"{group.question_title}-{name}")

    def test_unknown_pillar_is_empty(self):
        records = enrich_taxonomy(TAXONOMY, WorkloadAnswers(workload_id=""))
        assert group_by_question(records, "sustainability") == []


class TestTaxonomyCache:
    @pytest.mark.asyncio
    async def test_resolves_once_per_workload(self):
        source = MagicMock(return_value=TAXONOMY)
        answers = FakeAnswersClient(ANSWERS)
        cache = TaxonomyCache(answers, source=source)

        first = await cache.resolve("w1")
        second = await cache.resolve("w1")
        await cache.resolve("w2")

        assert first is second
        assert source.call_count == 1
        assert answers.requests == ["w1", "w2"]

    @pytest.mark.asyncio
    async def test_concurrent_resolves_share_one_load(self):
        answers = FakeAnswersClient(ANSWERS)
        cache = TaxonomyCache(answers, source=lambda: TAXONOMY)

        results = await asyncio.gather(*(cache.resolve("w1") for _ in range(3)))

        assert answers.requests == ["w1"]
        assert results[0] is results[1] is results[2]

    @pytest.mark.asyncio
    async def test_workloads_do_not_share_ids(self):
        cache = TaxonomyCache(FakeAnswersClient(ANSWERS), source=lambda: TAXONOMY)

        with_answers = await cache.retrieve_best_practices("operational-excellence", "w1")
        without = await cache.retrieve_best_practices("operational-excellence", "")

        assert with_answers[0].question_id == "priorities"
        assert without[0].question_id == generate_fallback_id(PRIORITIES)

    @pytest.mark.asyncio
    async def test_invalidate_one_workload_keeps_base(self):
        source = MagicMock(return_value=TAXONOMY)
        answers = FakeAnswersClient(ANSWERS)
        cache = TaxonomyCache(answers, source=source)
        await cache.resolve("w1")

        cache.invalidate("w1")
        await cache.resolve("w1")

        assert answers.requests == ["w1", "w1"]
        assert source.call_count == 1

    @pytest.mark.asyncio
    async def test_invalidate_all_reloads_base(self):
        source = MagicMock(return_value=TAXONOMY)
        cache = TaxonomyCache(FakeAnswersClient(), source=source)
        await cache.resolve("")

        cache.invalidate()
        await cache.resolve("")

        assert source.call_count == 2

    @pytest.mark.asyncio
    async def test_source_failure_is_taxonomy_unavailable(self):
        cache = TaxonomyCache(FakeAnswersClient(), source=MagicMock(side_effect=RuntimeError("boom")))

        with pytest.raises(TaxonomyUnavailableError):
            await cache.resolve("w1")

    @pytest.mark.asyncio
    async def test_security_groups(self):
        cache = TaxonomyCache(FakeAnswersClient(), source=lambda: TAXONOMY)

        groups = await cache.retrieve_best_practices("security", "")

        assert [g.question_title for g in groups] == list(SEC_QUESTIONS)
        assert all(g.pillar == "Security" for g in groups)
