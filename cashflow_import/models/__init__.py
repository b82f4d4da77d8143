"""Domain models for the cashflow import pipeline.

This package contains the frozen dataclasses passed between readers, the
analyzer, the processor and the persistence adapters.
"""

from .analysis import ColumnProfile, DatasetAnalysis, DateRange, RowInsight
from .budget import BudgetKey, LedgerEntry, LedgerTransaction
from .config_models import DatabaseConfig, ImportConfig, LimitsConfig
from .directory import CashFlowSourceInfo, CategoryInfo
from .error_record import ErrorRecord, RowError
from .grid import GridRow, TabularDataset
from .mapping import Assignment, ColumnMapping, ImportRequest
from .processing_result import CommitResult, ImportSummary, TransformedRow, TransformResult
from .session import ImportSession

__all__ = [
    # Configuration models
    "DatabaseConfig",
    "ImportConfig",
    "LimitsConfig",
    # Grid / analysis
    "GridRow",
    "TabularDataset",
    "ColumnProfile",
    "RowInsight",
    "DateRange",
    "DatasetAnalysis",
    # Request
    "Assignment",
    "ColumnMapping",
    "ImportRequest",
    # Results
    "TransformedRow",
    "ImportSummary",
    "TransformResult",
    "CommitResult",
    "RowError",
    "ErrorRecord",
    # Directory / ledger
    "CategoryInfo",
    "CashFlowSourceInfo",
    "LedgerTransaction",
    "LedgerEntry",
    "BudgetKey",
    # Session
    "ImportSession",
]
