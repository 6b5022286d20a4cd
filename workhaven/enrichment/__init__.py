"""
Enrichment Module
=================

Derives work-friendliness attributes (WiFi, noise, outlets, tip) for
discovered spots through the Grok chat completions API.
"""

from .grok_client import (
    BATCH_SIZE,
    MAX_CONCURRENT_BATCHES,
    ApiError,
    DecodingError,
    EncodingError,
    EnrichmentError,
    GrokEnrichmentClient,
    NetworkError,
)

__all__ = [
    "BATCH_SIZE",
    "MAX_CONCURRENT_BATCHES",
    "ApiError",
    "DecodingError",
    "EncodingError",
    "EnrichmentError",
    "GrokEnrichmentClient",
    "NetworkError",
]
