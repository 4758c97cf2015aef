"""
SEO-проверки контента магазина и пайплайн их параллельного запуска.
"""

from .base_check import BaseCheck
from .pipeline import CheckPipeline, PipelineResult, default_checks

__all__ = ["BaseCheck", "CheckPipeline", "PipelineResult", "default_checks"]
