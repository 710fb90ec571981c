"""Tests for the per-item best-practice details loop."""

from unittest.mock import MagicMock

import pytest

from wafr_engine.core.config import get_settings
from wafr_engine.core.errors import InferenceFailure, InputValidationError
from wafr_engine.core.schemas_iac import IaCTemplateType
from wafr_engine.services.details_orchestrator import PARTIAL_WARNING, DetailsOrchestrator

from tests.fakes.fake_services import FakeDocumentStore, FakeInvoker
from tests.fixtures_wafr import IMAGE_FILE_ID, PNG_BYTES, TEXT_FILE_ID, USER_ID

END = "<end_of_details_generation>"

ITEMS = [
    {"pillar": "Security", "name": "Use temporary credentials", "applied": False},
    {"pillar": "Security", "name": "Use strong sign-in mechanisms", "applied": True},
    {"pillar": "Reliability", "name": "Back up data", "applied": False},
]


def _build(responses, **setting_overrides):
    store = FakeDocumentStore()
    store.add_document(USER_ID, TEXT_FILE_ID, b"Resources:\n  Bucket:\n    Type: AWS::S3::Bucket", "text/yaml")
    store.add_document(USER_ID, IMAGE_FILE_ID, PNG_BYTES, "image/png")

    settings = get_settings().model_copy(
        update={"GENERATION_PACING_SECONDS": 0, **setting_overrides}
    )
    invoker = FakeInvoker(responses)
    progress = MagicMock()
    orchestrator = DetailsOrchestrator(store=store, invoker=invoker, progress=progress, settings=settings)
    return orchestrator, invoker, progress


class TestMoreDetails:
    @pytest.mark.asyncio
    async def test_only_missing_practices_are_detailed(self):
        responses = [f"# Security - Use temporary credentials\nUse roles.\n{END}", f"# Reliability - Back up data\nUse AWS Backup.\n{END}"]
        orchestrator, invoker, progress = _build(responses)

        outcome = await orchestrator.get_more_details(USER_ID, TEXT_FILE_ID, ITEMS)

        assert outcome.error is None
        assert outcome.content == (
            "# Security - Use temporary credentials\nUse roles."
            "\n\n---\n\n"
            "# Reliability - Back up data\nUse AWS Backup."
        )
        assert len(invoker.calls) == 2
        assert "Use strong sign-in mechanisms" not in "".join(c["user"] for c in invoker.calls)

        final = progress.emit_implementation_progress.call_args_list[-1].args[1]
        assert final.status == "Analysis complete"
        assert final.progress == 100

    @pytest.mark.asyncio
    async def test_text_document_is_embedded(self):
        orchestrator, invoker, _ = _build([f"# Detail\nok\n{END}"])

        await orchestrator.get_more_details(USER_ID, TEXT_FILE_ID, ITEMS[:1])

        call = invoker.calls[0]
        assert call["image"] is None
        assert "<iac_document>" in call["user"]
        assert "AWS::S3::Bucket" in call["user"]

    @pytest.mark.asyncio
    async def test_image_asks_for_template_examples(self):
        orchestrator, invoker, _ = _build([f"# Detail\nok\n{END}"])

        await orchestrator.get_more_details(USER_ID, IMAGE_FILE_ID, ITEMS[:1], IaCTemplateType.TERRAFORM)

        call = invoker.calls[0]
        assert call["image"].startswith("data:image/png;base64,")
        assert "Include Terraform (tf) examples" in call["system"]
        assert "<iac_document>" not in call["user"]

    @pytest.mark.asyncio
    async def test_truncated_turns_are_accumulated(self):
        responses = [
            "# Part one\nIntro text\n# Part two\nCut off mid<details_truncated>",
            f"# Part two\nFull text\n{END}",
        ]
        orchestrator, invoker, _ = _build(responses)

        outcome = await orchestrator.get_more_details(USER_ID, TEXT_FILE_ID, ITEMS[:1])

        assert outcome.content == "# Part one\nIntro text\n# Part two\nFull text"
        assert "Previously generated content:" in invoker.calls[1]["user"]

    @pytest.mark.asyncio
    async def test_failed_item_is_skipped_with_warning(self):
        orchestrator, _, _ = _build([InferenceFailure("throttled"), f"# Reliability - Back up data\nok\n{END}"])

        outcome = await orchestrator.get_more_details(USER_ID, TEXT_FILE_ID, ITEMS)

        assert outcome.content == "# Reliability - Back up data\nok"
        assert outcome.error == PARTIAL_WARNING

    @pytest.mark.asyncio
    async def test_turn_ceiling_keeps_content_with_warning(self):
        responses = ["# A\none\n# B\ncut<details_truncated>", "# B\ntwo\n# C\ncut<details_truncated>"]
        orchestrator, invoker, _ = _build(responses, DETAILS_MAX_TURNS=2)

        outcome = await orchestrator.get_more_details(USER_ID, TEXT_FILE_ID, ITEMS[:1])

        assert len(invoker.calls) == 2
        assert outcome.content == "# A\none\n# B\ntwo"
        assert outcome.error == PARTIAL_WARNING

    @pytest.mark.asyncio
    async def test_no_output_at_all_fails(self):
        orchestrator, _, _ = _build([InferenceFailure("down"), InferenceFailure("down")])

        with pytest.raises(InferenceFailure, match="Failed to generate any detailed analysis"):
            await orchestrator.get_more_details(USER_ID, TEXT_FILE_ID, ITEMS)

    @pytest.mark.asyncio
    async def test_all_applied_is_rejected(self):
        orchestrator, invoker, _ = _build([])

        with pytest.raises(InputValidationError):
            await orchestrator.get_more_details(USER_ID, TEXT_FILE_ID, [ITEMS[1]])
        assert invoker.calls == []

    @pytest.mark.asyncio
    async def test_empty_selection_is_rejected(self):
        orchestrator, _, _ = _build([])

        with pytest.raises(InputValidationError, match="No items selected"):
            await orchestrator.get_more_details(USER_ID, TEXT_FILE_ID, [])
