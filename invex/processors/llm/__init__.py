"""
LLM integrations for InvEX

The pipeline talks to vision models only through ``StructuredExtractor``.
"""

from invex.processors.llm.base import StructuredExtractor
from invex.processors.llm.openai_service import OpenAIVisionService, clean_json_response
from invex.processors.llm.prompt_manager import PromptManager

__all__ = [
    'StructuredExtractor',
    'OpenAIVisionService',
    'PromptManager',
    'clean_json_response',
]
