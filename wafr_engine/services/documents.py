"""Loading a work item's document in the form the prompts need."""

import base64
from dataclasses import dataclass

from wafr_engine.core.errors import InputValidationError, StorageFailure, WorkItemNotFoundError
from wafr_engine.core.logging import get_logger
from wafr_engine.db.work_items import DocumentStore

logger = get_logger(__name__)


@dataclass
class LoadedDocument:
    """Document content: a data URI for images, UTF-8 text otherwise."""

    content: str
    content_type: str

    @property
    def is_image(self) -> bool:
        return self.content_type.startswith("image/")


def to_data_uri(data: bytes | str, content_type: str) -> str:
    """Encode image content as ``data:<type>;base64,<payload>`` (idempotent)."""
    if isinstance(data, str):
        if data.startswith("data:"):
            return data
        data = data.encode("latin-1")
    return f"data:{content_type};base64,{base64.b64encode(data).decode('ascii')}"


async def load_document(store: DocumentStore, user_id: str, file_id: str) -> LoadedDocument:
    """
    Fetch a work item's original document.

    Raises:
        InputValidationError: If user or file id is missing
        WorkItemNotFoundError: If there is no such work item
        StorageFailure: If the content cannot be fetched
    """
    if not user_id:
        raise InputValidationError("User ID is required")
    if not file_id:
        raise InputValidationError("File ID is required")

    item = await store.get_work_item(user_id, file_id)
    if not item:
        raise WorkItemNotFoundError(f"Work item {file_id} not found")

    try:
        original = await store.get_original_content(user_id, file_id, raw=False)
    except StorageFailure:
        raise
    except Exception as e:
        logger.error(f"Error fetching file content for {file_id}: {e}")
        raise StorageFailure("Failed to fetch file content from storage", cause=e) from e

    content_type = original.content_type or item.get("file_type") or ""
    if content_type.startswith("image/"):
        content = to_data_uri(original.data, content_type)
    elif isinstance(original.data, bytes):
        content = original.data.decode("utf-8")
    else:
        content = original.data

    return LoadedDocument(content=content, content_type=content_type)
