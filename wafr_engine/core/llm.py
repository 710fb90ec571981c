"""Inference access through the Anthropic Messages API.

One ``InferenceInvoker`` is shared by every run. It performs a single call per
``invoke`` and never retries; the orchestrators decide what a failure means.
"""

import re
import time

from anthropic import AsyncAnthropic

from wafr_engine.core.cancellation import CancellationToken, race
from wafr_engine.core.config import get_settings
from wafr_engine.core.errors import InferenceFailure, InputValidationError
from wafr_engine.core.logging import get_logger
from wafr_engine.core.response_parser import parse_verdict_payload
from wafr_engine.core.schemas_analysis import ModelVerdictPayload

logger = get_logger(__name__)

DATA_URI = re.compile(r"^data:([^;]+);base64,(.+)$", re.DOTALL)


def parse_data_uri(uri: str) -> tuple[str, str]:
    """
    Split a ``data:<media type>;base64,<payload>`` URI.

    Returns:
        (media_type, base64_payload)

    Raises:
        InputValidationError: If the string is not a base64 data URI
    """
    match = DATA_URI.match(uri)
    if not match:
        raise InputValidationError("Invalid image data format")
    return match.group(1), match.group(2)


class InferenceInvoker:
    """Wraps single text or multimodal calls to the configured model."""

    def __init__(
        self,
        client: AsyncAnthropic | None = None,
        model: str | None = None,
        max_tokens: int | None = None,
    ):
        settings = get_settings()
        self.client = client or AsyncAnthropic(api_key=settings.ANTHROPIC_API_KEY)
        self.model = model or settings.INFERENCE_MODEL
        self.max_tokens = max_tokens or settings.INFERENCE_MAX_TOKENS

    def _build_content(self, user_prompt: str, image: str | None) -> list[dict]:
        content: list[dict] = []
        if image is not None:
            media_type, data = parse_data_uri(image)
            content.append(
                {
                    "type": "image",
                    "source": {
                        "type": "base64",
                        "media_type": media_type,
                        "data": data,
                    },
                }
            )
        content.append({"type": "text", "text": user_prompt})
        return content

    async def invoke(self, system_prompt: str, user_prompt: str, image: str | None = None) -> str:
        """
        Send one message and return the model's text.

        Args:
            system_prompt: Instructions
            user_prompt: User turn text
            image: Optional data URI attached before the text

        Returns:
            Text of the first content block

        Raises:
            InputValidationError: If ``image`` is not a base64 data URI
            InferenceFailure: On transport errors or a response without text
        """
        content = self._build_content(user_prompt, image)
        started = time.monotonic()

        try:
            response = await self.client.messages.create(
                model=self.model,
                max_tokens=self.max_tokens,
                system=system_prompt,
                messages=[{"role": "user", "content": content}],
            )
        except Exception as e:
            logger.error(f"Error invoking inference model {self.model}: {e}")
            raise InferenceFailure(f"Error invoking inference model: {e}", cause=e) from e

        text = next(
            (block.text for block in response.content or [] if getattr(block, "type", None) == "text"),
            "",
        )
        if not text:
            raise InferenceFailure("Inference model returned an empty response")

        usage = getattr(response, "usage", None)
        logger.info(
            f"Inference call to {self.model} took {time.monotonic() - started:.1f}s",
            extra={
                "extra_data": {
                    "multimodal": image is not None,
                    "tokens_input": getattr(usage, "input_tokens", None),
                    "tokens_output": getattr(usage, "output_tokens", None),
                }
            },
        )
        return text

    async def invoke_verdicts(
        self, system_prompt: str, user_prompt: str, image: str | None = None
    ) -> ModelVerdictPayload:
        """Invoke and parse the JSON verdict payload (``ResponseMalformed`` if unparseable)."""
        text = await self.invoke(system_prompt, user_prompt, image)
        return parse_verdict_payload(text)

    async def invoke_cancellable(
        self,
        token: CancellationToken,
        system_prompt: str,
        user_prompt: str,
        image: str | None = None,
    ) -> str | None:
        """Invoke racing the token; returns None if cancellation won."""
        text, cancelled = await race(token, self.invoke(system_prompt, user_prompt, image))
        if cancelled:
            logger.info("Inference call abandoned after cancellation")
            return None
        return text
