"""
Invoice Extractor

Sends rendered page images to a structured-output vision service and returns
the raw extraction candidate. The candidate is untrusted: it only has the
right top-level shape. Field-level checks belong to the validator.
"""

import asyncio
import base64
import logging
import time
from pathlib import Path
from typing import Any, Dict, List, Optional

from invex.exceptions import DecodeError, ExtractionError, MissingArtifactError
from invex.jobs.circuit_breaker import CircuitBreaker
from invex.models.schema import TOP_LEVEL_KEYS, invoice_extraction_schema
from invex.processors.llm.base import StructuredExtractor
from invex.processors.llm.prompt_manager import PromptManager

logger = logging.getLogger(__name__)


class InvoiceExtractor:
    """
    Extracts structured invoice data from page images.

    Features:
    - One request per invoice: system instruction plus a single user turn
      carrying every page image in order
    - Strict JSON-schema response format
    - Own request timeout and a shared failure-rate circuit breaker
    """

    def __init__(
        self,
        service: StructuredExtractor,
        prompt_manager: Optional[PromptManager] = None,
        breaker: Optional[CircuitBreaker] = None,
        request_timeout: Optional[float] = None,
        prompt_name: str = 'invoice_extraction'
    ):
        self.service = service
        self.prompt_manager = prompt_manager or PromptManager()
        self.breaker = breaker
        self.request_timeout = request_timeout
        self.prompt_name = prompt_name
        self.schema = invoice_extraction_schema()

    async def extract(self, image_paths: List[str]) -> Dict[str, Any]:
        """
        Extract invoice data from ordered page images.

        Args:
            image_paths: Absolute JPEG paths, one per page

        Returns:
            Extraction candidate dict

        Raises:
            MissingArtifactError: No images, or an image is not on disk
            ExtractionError: Service/transport failure, timeout, or open circuit
            DecodeError: Response is not an object of the declared shape
        """
        if not image_paths:
            raise MissingArtifactError("No image paths provided for invoice extraction")

        images = await asyncio.to_thread(self._encode_images, image_paths)

        system_prompt = self.prompt_manager.get_system_prompt(self.prompt_name)
        instruction = self.prompt_manager.get_user_prompt(self.prompt_name, page_count=len(images))

        start_time = time.time()
        if self.breaker is not None:
            candidate = await self.breaker.call(self._request, images, system_prompt, instruction)
        else:
            candidate = await self._request(images, system_prompt, instruction)
        elapsed_ms = int((time.time() - start_time) * 1000)

        self._check_shape(candidate)

        line_items = candidate.get('line_items')
        logger.info(
            f"Extraction returned {sum(1 for v in candidate.values() if v is not None)} section(s), "
            f"{len(line_items) if isinstance(line_items, list) else 0} line item(s) in {elapsed_ms}ms"
        )
        return candidate

    def _encode_images(self, image_paths: List[str]) -> List[str]:
        encoded = []
        for image_path in image_paths:
            path = Path(image_path)
            if not path.is_file():
                raise MissingArtifactError(f"Image file not found: {image_path}")
            data = base64.b64encode(path.read_bytes()).decode('ascii')
            encoded.append(f"data:image/jpeg;base64,{data}")
        return encoded

    async def _request(self, images: List[str], system_prompt: str, instruction: str) -> Dict[str, Any]:
        try:
            if self.request_timeout:
                return await asyncio.wait_for(
                    self.service.extract(images, self.schema, system_prompt, instruction),
                    timeout=self.request_timeout
                )
            return await self.service.extract(images, self.schema, system_prompt, instruction)
        except asyncio.TimeoutError as e:
            raise ExtractionError(
                f"Extraction request timed out after {self.request_timeout}s"
            ) from e
        except (ExtractionError, DecodeError):
            raise
        except Exception as e:
            raise ExtractionError(f"Extraction service failed: {e}") from e

    def _check_shape(self, candidate: Any) -> None:
        if not isinstance(candidate, dict):
            raise DecodeError(f"Extraction response is not an object: {type(candidate).__name__}")

        missing = [key for key in TOP_LEVEL_KEYS if key not in candidate]
        if missing:
            raise DecodeError(f"Extraction response missing section(s): {', '.join(missing)}")

        unexpected = sorted(set(candidate) - set(TOP_LEVEL_KEYS))
        if unexpected:
            raise DecodeError(f"Extraction response has unexpected section(s): {', '.join(unexpected)}")
