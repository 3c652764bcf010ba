"""
OpenAI Vision Service

Structured-output extraction against the OpenAI chat completions API.
"""

import json
import logging
from typing import Any, Dict, List, Optional

from openai import AsyncOpenAI, OpenAIError

from invex.exceptions import DecodeError, ExtractionError
from invex.models.schema import response_format
from invex.processors.llm.base import StructuredExtractor

logger = logging.getLogger(__name__)

DEFAULT_MODEL = 'gpt-4o-2024-08-06'


def clean_json_response(content: str) -> str:
    """Remove markdown code blocks from OpenAI response"""
    content = content.strip()
    if content.startswith('```json'):
        content = content[7:]
    if content.startswith('```'):
        content = content[3:]
    if content.endswith('```'):
        content = content[:-3]
    return content.strip()


class OpenAIVisionService(StructuredExtractor):
    """OpenAI implementation of :class:`StructuredExtractor`"""

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = DEFAULT_MODEL,
        max_tokens: int = 4096,
        temperature: float = 0.0,
        image_detail: str = 'high',
        client: Optional[AsyncOpenAI] = None
    ):
        """
        Initialize OpenAI vision service

        Args:
            api_key: OpenAI API key (falls back to OPENAI_API_KEY in the client)
            model: Model to use; must support strict JSON-schema outputs
            max_tokens: Output token cap for a single extraction
            temperature: Sampling temperature
            image_detail: Vision detail level for every page image
            client: Pre-built client, mainly for tests
        """
        self.client = client or AsyncOpenAI(api_key=api_key)
        self.model = model
        self.max_tokens = max_tokens
        self.temperature = temperature
        self.image_detail = image_detail

    def build_messages(self, images: List[str], system_prompt: str, instruction: str) -> List[Dict[str, Any]]:
        """System turn plus one user turn: instruction text then every page image in order"""
        content: List[Dict[str, Any]] = [{'type': 'text', 'text': instruction}]
        for image_url in images:
            content.append({
                'type': 'image_url',
                'image_url': {'url': image_url, 'detail': self.image_detail}
            })

        return [
            {'role': 'system', 'content': system_prompt},
            {'role': 'user', 'content': content}
        ]

    async def extract(
        self,
        images: List[str],
        schema: Dict[str, Any],
        system_prompt: str,
        instruction: str
    ) -> Dict[str, Any]:
        messages = self.build_messages(images, system_prompt, instruction)

        try:
            logger.info(f"Calling OpenAI ({self.model}) with {len(images)} page image(s)")
            response = await self.client.chat.completions.create(
                model=self.model,
                messages=messages,
                response_format=response_format(schema),
                max_tokens=self.max_tokens,
                temperature=self.temperature
            )
        except OpenAIError as e:
            logger.error(f"OpenAI API call failed: {str(e)} (images={len(images)})")
            raise ExtractionError(f"OpenAI API call failed: {str(e)}") from e

        if not response.choices:
            raise DecodeError("OpenAI response contained no choices")

        message = response.choices[0].message
        if getattr(message, 'refusal', None):
            raise DecodeError(f"OpenAI refused the extraction: {message.refusal}")

        content = message.content or ''
        try:
            decoded = json.loads(clean_json_response(content))
        except json.JSONDecodeError as e:
            logger.error(f"Failed to decode OpenAI response: {content[:500]}")
            raise DecodeError("Failed to decode OpenAI response") from e

        if not isinstance(decoded, dict):
            raise DecodeError(f"OpenAI response is not a JSON object: {type(decoded).__name__}")

        if response.choices[0].finish_reason == 'length':
            logger.warning("OpenAI response hit the max_tokens limit")

        usage = getattr(response, 'usage', None)
        if usage is not None:
            logger.debug(
                f"OpenAI usage: prompt={usage.prompt_tokens} completion={usage.completion_tokens}"
            )

        return decoded
