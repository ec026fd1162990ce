"""
Multi-Source Price Feed Engine

This module provides trusted prices from multiple unreliable sources:
- FeedConfig: Per-symbol feed configuration with defaults and merging
- ConfidenceAnalyzer: Trust scoring for a single price sample
- CrossValidator: Pairwise deviation between sources
- PriceAggregator: Trust-weighted consensus price
- SourceManager: Per-source failure tracking with exponential backoff
- HistoryTracker: Bounded price history with trend analytics
- QualityReport: Overall quality score and recommendation
- FeedManager: Main orchestrator with caching and background refresh
- adapters: Modular price source implementations
"""

from .ConfidenceAnalyzer import ConfidenceVerdict, analyze_confidence, classify_staleness
from .CrossValidator import CrossValidationReport, CrossValidationResult, CrossValidator
from .errors import (
    AllSourcesFailed,
    CrossValidationDeviation,
    FeedError,
    FeedWarning,
    NotConfigured,
    StaleDataWarning,
)
from .FeedConfig import (
    DEFAULT_FEED_CONFIGS,
    FeedConfig,
    build_feed_config,
    load_feed_configs,
    merge_feed_config,
)
from .FeedManager import FeedManager, FeedStatus
from .HistoryTracker import HistoryConfig, HistoryPoint, HistoryTracker, TrendAnalysis
from .PriceAggregator import AggregatedPrice, AggregationResult, PriceAggregator
from .QualityReport import QualityReport, QualityReportGenerator
from .SourceManager import SourceManager, SourceStatus

__all__ = [
    "AggregatedPrice",
    "AggregationResult",
    "AllSourcesFailed",
    "ConfidenceVerdict",
    "CrossValidationDeviation",
    "CrossValidationReport",
    "CrossValidationResult",
    "CrossValidator",
    "DEFAULT_FEED_CONFIGS",
    "FeedConfig",
    "FeedError",
    "FeedManager",
    "FeedStatus",
    "FeedWarning",
    "HistoryConfig",
    "HistoryPoint",
    "HistoryTracker",
    "NotConfigured",
    "PriceAggregator",
    "QualityReport",
    "QualityReportGenerator",
    "SourceManager",
    "SourceStatus",
    "StaleDataWarning",
    "TrendAnalysis",
    "analyze_confidence",
    "build_feed_config",
    "classify_staleness",
    "load_feed_configs",
    "merge_feed_config",
]
