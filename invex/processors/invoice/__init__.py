"""
Invoice Processing Module

Stages of the invoice pipeline and the orchestrator that runs them.

Components:
- InvoiceExtractor: Vision-model extraction from rendered page images
- InvoiceValidator: Field-level checks and totals reconciliation
- InvoicePersister: Transactional save of the validated data
- TempFileCleaner: Removal of per-run temp files
- InvoicePipeline: End-to-end processing pipeline
"""

from .manifest import ManifestStore, RunManifest
from .extractor import InvoiceExtractor
from .validator import InvoiceValidator
from .persister import InvoicePersister
from .cleanup import TempFileCleaner
from .pipeline import (
    InvoicePipeline,
    PipelineContext,
    PipelineResult,
    PipelineStage,
    StageDescriptor,
    StagePolicy
)

__all__ = [
    # Processors
    'InvoiceExtractor',
    'InvoiceValidator',
    'InvoicePersister',
    'TempFileCleaner',
    'InvoicePipeline',

    # Handoff
    'ManifestStore',
    'RunManifest',

    # Types
    'PipelineStage',
    'PipelineContext',
    'PipelineResult',
    'StageDescriptor',
    'StagePolicy'
]
