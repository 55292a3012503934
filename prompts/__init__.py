"""
Prompt templates for PulsePoint.
"""

from prompts.prompt_categorize import CATEGORIZE_SYSTEM_PROMPT

__all__ = [
    "CATEGORIZE_SYSTEM_PROMPT",
]
