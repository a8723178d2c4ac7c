"""Batch pipeline: windowing, classification, assembly, generation and persistence."""

from docsyphon.pipeline.processor import BatchConfig, BatchProcessor, ProcessingResult

__all__ = ["BatchConfig", "BatchProcessor", "ProcessingResult"]
