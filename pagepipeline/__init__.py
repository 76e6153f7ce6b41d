"""
pagepipeline - OCR, summarize and quality-check scanned book pages

A pipeline for:
1. Extracting page text with an ensemble of OCR strategies
2. Cleaning OCR output and detecting non-content pages
3. Summarizing pages through an LLM, optionally with context from earlier pages
4. Scoring summaries and repairing weak ones before they are stored
5. Driving whole page ranges resumably, with pause, stop and retry
"""

__version__ = "1.0.0"
__author__ = "pagepipeline"

from .automation import AutomationController, AutomationHooks
from .config import PipelineConfig
from .confidence import score
from .ocr import OcrEnsembleExtractor
from .pipeline import PagePipeline
from .quality_gate import run_gate
from .retrieval import retrieve

__all__ = [
    "AutomationController",
    "AutomationHooks",
    "OcrEnsembleExtractor",
    "PagePipeline",
    "PipelineConfig",
    "retrieve",
    "run_gate",
    "score",
]
