"""Work item and document database operations.

A work item is the per-user, per-document record tracking the analysis and IaC
generation processes. Originals, analysis results and generated documents live
in Supabase Storage next to it.
"""

import asyncio
import json
from dataclasses import dataclass
from datetime import datetime, timezone  # noqa: UP035
from typing import Any

from wafr_engine.core.config import get_settings
from wafr_engine.core.errors import StorageFailure
from wafr_engine.core.logging import get_logger
from wafr_engine.core.schemas_analysis import AnalysisResult
from wafr_engine.db.supabase_client import get_supabase

logger = get_logger(__name__)

IAC_CONTENT_TYPES = {
    "yaml": "application/x-yaml",
    "json": "application/json",
    "tf": "text/plain",
}


@dataclass
class OriginalContent:
    """Original document as stored."""

    data: bytes | str
    content_type: str


def _utc_now_iso() -> str:
    """Get current UTC time as ISO string."""
    return datetime.now(timezone.utc).isoformat()  # noqa: UP017


def _is_text_type(content_type: str) -> bool:
    return not content_type.startswith("image/")


def get_work_item(user_id: str, file_id: str) -> dict[str, Any] | None:
    """
    Get a work item by user and file.

    Returns:
        Work item dict or None if not found

    Raises:
        StorageFailure: If database operation fails
    """
    settings = get_settings()
    supabase = get_supabase()

    try:
        response = (
            supabase.table(settings.WORK_ITEMS_TABLE)
            .select("*")
            .eq("user_id", user_id)
            .eq("file_id", file_id)
            .execute()
        )
    except Exception as e:
        logger.error(f"Failed to get work item {file_id}: {e}", extra={"user_id": user_id})
        raise StorageFailure(f"Failed to get work item: {e}", cause=e) from e

    if response.data:
        return response.data[0]

    logger.warning(f"Work item {file_id} not found", extra={"user_id": user_id})
    return None


def get_original_content(user_id: str, file_id: str, raw: bool = False) -> OriginalContent:
    """
    Download the original document of a work item.

    Args:
        user_id: Owner
        file_id: Work item id
        raw: Return bytes even for text documents

    Raises:
        StorageFailure: If the work item or its object cannot be read
    """
    settings = get_settings()
    item = get_work_item(user_id, file_id)
    if not item:
        raise StorageFailure(f"Work item {file_id} not found")

    content_type = item.get("file_type") or "application/octet-stream"
    supabase = get_supabase()

    try:
        data = supabase.storage.from_(settings.DOCUMENTS_BUCKET).download(item["storage_path"])
    except Exception as e:
        logger.error(f"Failed to download original for {file_id}: {e}", extra={"user_id": user_id})
        raise StorageFailure(f"Failed to fetch file content from storage: {e}", cause=e) from e

    if not raw and _is_text_type(content_type) and isinstance(data, bytes):
        return OriginalContent(data=data.decode("utf-8"), content_type=content_type)
    return OriginalContent(data=data, content_type=content_type)


def update_work_item(user_id: str, file_id: str, fields: dict[str, Any]) -> None:
    """
    Apply a partial update to a work item, stamping ``last_modified``.

    Raises:
        StorageFailure: If database operation fails
    """
    settings = get_settings()
    supabase = get_supabase()
    payload = {**fields, "last_modified": _utc_now_iso()}

    try:
        supabase.table(settings.WORK_ITEMS_TABLE).update(payload).eq("user_id", user_id).eq(
            "file_id", file_id
        ).execute()
    except Exception as e:
        logger.error(f"Failed to update work item {file_id}: {e}", extra={"user_id": user_id})
        raise StorageFailure(f"Failed to update work item: {e}", cause=e) from e

    logger.debug(f"Updated work item {file_id}: {sorted(fields)}", extra={"user_id": user_id})


def _upload(path: str, body: bytes, content_type: str) -> None:
    settings = get_settings()
    supabase = get_supabase()
    supabase.storage.from_(settings.DOCUMENTS_BUCKET).upload(
        path=path,
        file=body,
        file_options={"content-type": content_type, "upsert": "true"},
    )


def store_analysis_results(user_id: str, file_id: str, results: list[AnalysisResult]) -> str:
    """
    Store the analysis results of a work item (replacing earlier ones).

    Returns:
        Storage path of the results object

    Raises:
        StorageFailure: If the upload fails
    """
    path = f"{user_id}/{file_id}/analysis/analysis.json"
    body = json.dumps([r.model_dump(mode="json") for r in results], indent=2).encode("utf-8")

    try:
        _upload(path, body, "application/json")
    except Exception as e:
        logger.error(f"Failed to store analysis results for {file_id}: {e}", extra={"user_id": user_id})
        raise StorageFailure(f"Failed to store analysis results: {e}", cause=e) from e

    logger.info(f"Stored {len(results)} analysis results for {file_id}", extra={"user_id": user_id})
    return path


def store_iac_document(
    user_id: str,
    file_id: str,
    content: str,
    extension: str,
    template_type: str,
) -> str:
    """
    Store a generated IaC document (replacing earlier versions).

    Returns:
        Storage path of the document

    Raises:
        StorageFailure: If the upload fails
    """
    path = f"{user_id}/{file_id}/iac/template.{extension}"

    try:
        _upload(path, content.encode("utf-8"), IAC_CONTENT_TYPES.get(extension, "text/plain"))
    except Exception as e:
        logger.error(f"Failed to store IaC document for {file_id}: {e}", extra={"user_id": user_id})
        raise StorageFailure(f"Failed to store IaC document: {e}", cause=e) from e

    logger.info(f"Stored {template_type} document for {file_id} at {path}", extra={"user_id": user_id})
    return path


class DocumentStore:
    """Async facade over the work item operations, injected into the orchestrators."""

    async def get_work_item(self, user_id: str, file_id: str) -> dict[str, Any] | None:
        return await asyncio.to_thread(get_work_item, user_id, file_id)

    async def get_original_content(self, user_id: str, file_id: str, raw: bool = False) -> OriginalContent:
        return await asyncio.to_thread(get_original_content, user_id, file_id, raw)

    async def update_work_item(self, user_id: str, file_id: str, fields: dict[str, Any]) -> None:
        await asyncio.to_thread(update_work_item, user_id, file_id, fields)

    async def store_analysis_results(self, user_id: str, file_id: str, results: list[AnalysisResult]) -> str:
        return await asyncio.to_thread(store_analysis_results, user_id, file_id, results)

    async def store_iac_document(
        self, user_id: str, file_id: str, content: str, extension: str, template_type: str
    ) -> str:
        return await asyncio.to_thread(
            store_iac_document, user_id, file_id, content, extension, template_type
        )
