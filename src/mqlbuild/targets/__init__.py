"""Compile target resolution: include graph, persisted mappings and pickers."""

from .include_graph import IncludeIndexCache, IndexInvalidator, ReverseIndex, build_reverse_index
from .picker import AutoFailPicker, ConsolePicker, TargetPicker
from .resolver import ResolutionStatus, TargetResolution, TargetResolver, find_candidate_mains
from .store import JsonTargetStore, MemoryTargetStore, TargetStore, open_target_store

__all__ = [
    "IncludeIndexCache",
    "IndexInvalidator",
    "ReverseIndex",
    "build_reverse_index",
    "AutoFailPicker",
    "ConsolePicker",
    "TargetPicker",
    "ResolutionStatus",
    "TargetResolution",
    "TargetResolver",
    "find_candidate_mains",
    "JsonTargetStore",
    "MemoryTargetStore",
    "TargetStore",
    "open_target_store",
]
