"""Base Well-Architected best-practice taxonomy stored in Supabase Storage."""

import json

from pydantic import TypeAdapter, ValidationError

from wafr_engine.core.config import get_settings
from wafr_engine.core.errors import TaxonomyUnavailableError
from wafr_engine.core.logging import get_logger
from wafr_engine.core.schemas_analysis import TaxonomyEntry
from wafr_engine.db.supabase_client import get_supabase

logger = get_logger(__name__)

_entries_adapter = TypeAdapter(list[TaxonomyEntry])


def fetch_base_taxonomy() -> list[TaxonomyEntry]:
    """
    Download and parse the (pillar, question, best practice) taxonomy object.

    Raises:
        TaxonomyUnavailableError: If the object is missing, empty or malformed
    """
    settings = get_settings()

    try:
        supabase = get_supabase()
        body = supabase.storage.from_(settings.WA_DOCS_BUCKET).download(
            settings.WA_BEST_PRACTICES_KEY
        )
    except Exception as e:
        logger.error(f"Failed to download best-practice taxonomy: {e}")
        raise TaxonomyUnavailableError(
            "Failed to load Well-Architected best practices", cause=e
        ) from e

    if not body:
        raise TaxonomyUnavailableError("No best-practice taxonomy data received")

    try:
        entries = _entries_adapter.validate_python(json.loads(body))
    except (json.JSONDecodeError, UnicodeDecodeError, ValidationError) as e:
        logger.error(f"Malformed best-practice taxonomy: {e}")
        raise TaxonomyUnavailableError(
            "Failed to parse Well-Architected best practices", cause=e
        ) from e

    logger.info(f"Loaded {len(entries)} best-practice taxonomy entries")
    return entries
