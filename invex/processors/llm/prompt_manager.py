"""
Prompt Manager for LLM Processors

Manages prompts stored in external files, allowing for easy editing
and versioning without code changes.
"""

import yaml
from pathlib import Path
from typing import Dict, Any, Optional
from jinja2 import Template
import logging

logger = logging.getLogger(__name__)

DEFAULT_PROMPTS_DIR = Path(__file__).parent.parent.parent / "prompts"


class PromptManager:
    """Manages prompts loaded from external files"""

    def __init__(self, prompts_dir: Optional[str] = None):
        """
        Initialize PromptManager

        Args:
            prompts_dir: Directory containing prompt files. If None, uses the packaged prompts.
        """
        self.prompts_dir = Path(prompts_dir) if prompts_dir else DEFAULT_PROMPTS_DIR
        self._prompts_cache: Dict[str, Dict[str, Any]] = {}

    def load_prompt(self, prompt_name: str, use_cache: bool = True) -> Dict[str, Any]:
        """
        Load a prompt from YAML file

        Args:
            prompt_name: Name of the prompt (without .yaml extension)
            use_cache: Whether to use cached prompts

        Returns:
            Dictionary with 'system_prompt' and 'user_prompt_template' keys

        Raises:
            FileNotFoundError: If no prompt file exists for the name
        """
        if use_cache and prompt_name in self._prompts_cache:
            return self._prompts_cache[prompt_name]

        prompt_file = self.prompts_dir / f"{prompt_name}.yaml"

        if not prompt_file.exists():
            raise FileNotFoundError(f"Prompt file not found: {prompt_file}")

        try:
            with open(prompt_file, 'r', encoding='utf-8') as f:
                prompt_data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            logger.error(f"Failed to load prompt {prompt_name}: {e}")
            raise

        if use_cache:
            self._prompts_cache[prompt_name] = prompt_data

        return prompt_data

    def get_system_prompt(self, prompt_name: str) -> str:
        """Get system prompt for a given prompt name"""
        prompt_data = self.load_prompt(prompt_name)
        return prompt_data.get('system_prompt', '').strip()

    def get_user_prompt(self, prompt_name: str, **kwargs) -> str:
        """
        Get user prompt with template variables filled in

        Args:
            prompt_name: Name of the prompt
            **kwargs: Variables to fill in the template

        Returns:
            Rendered user prompt string
        """
        prompt_data = self.load_prompt(prompt_name)
        template_str = prompt_data.get('user_prompt_template', '')

        template = Template(template_str)
        return template.render(**kwargs).strip()

    def clear_cache(self):
        """Clear the prompts cache"""
        self._prompts_cache.clear()
