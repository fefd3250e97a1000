# backend/prompts/__init__.py
"""
Recruiting Prompts Package

Contains LLM prompt templates for resume structuring and portfolio analysis.
"""

from .recruiting_prompts import PromptTemplates

__all__ = [
    "PromptTemplates",
]
