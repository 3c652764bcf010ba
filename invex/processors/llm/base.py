"""
Structured extraction capability.

The pipeline only depends on this interface; vendor integrations live in
sibling modules and can be swapped through configuration.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List


class StructuredExtractor(ABC):
    """Sends page images to a vision model and returns schema-shaped JSON"""

    model: str = 'unknown'

    @abstractmethod
    async def extract(
        self,
        images: List[str],
        schema: Dict[str, Any],
        system_prompt: str,
        instruction: str
    ) -> Dict[str, Any]:
        """
        Run one structured extraction request.

        Args:
            images: Page images as ``data:image/jpeg;base64,...`` URIs, in page order
            schema: JSON schema the response must conform to
            system_prompt: Extraction intent and null/confidence contract
            instruction: Short user-turn text preceding the images

        Returns:
            Decoded JSON object

        Raises:
            ExtractionError: Transport or service failure
            DecodeError: Response is not a JSON object
        """
