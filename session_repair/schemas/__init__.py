"""
Schema definitions for opencode-session-repair.

This package contains Pydantic models for:
- documents: session, message and part documents read from the store
- operations: scan findings, repair plans, backup manifests and results
"""

from __future__ import annotations

from session_repair.schemas.base import JsonDatetime, PathStr, PermissiveModel, StrictModel

__all__ = [
    'JsonDatetime',
    'PathStr',
    'PermissiveModel',
    'StrictModel',
]
