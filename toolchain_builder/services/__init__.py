"""
Service layer for toolchain-builder.

Services orchestrate domain objects and infrastructure:
- FetchService: Bounded-concurrency download and extraction of packages
"""

from .fetch_service import FetchService, FetchOptions, ExtractionTask

__all__ = [
    'FetchService',
    'FetchOptions',
    'ExtractionTask',
]
