"""
SDK for Summary Guard.

Provides the model-backed artifact generators.
"""

from .openai_generator import OpenAISummaryGenerator

__all__ = ["OpenAISummaryGenerator"]
