"""Candidate search: normalization, datasets, ranking."""

from .candidate_resolver import CandidateResolver
from .datasets import DatasetCache, DatasetError, FileDatasetProvider, HttpDatasetProvider

__all__ = ['CandidateResolver', 'DatasetCache', 'DatasetError', 'FileDatasetProvider', 'HttpDatasetProvider']
