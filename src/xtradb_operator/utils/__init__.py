"""Utility functions for the PerconaXtraDB Operator."""

from .conditions import (
    get_condition,
    has_condition,
    is_condition_true,
    set_data_restored_condition,
    set_provisioned_condition,
    update_condition,
)
from .errors import sanitize_dict, sanitize_error_message, sanitize_exception
from .events import emit_event
from .rate_limit import rate_limit_k8s

__all__ = [
    "update_condition",
    "get_condition",
    "has_condition",
    "is_condition_true",
    "set_provisioned_condition",
    "set_data_restored_condition",
    "emit_event",
    "sanitize_error_message",
    "sanitize_exception",
    "sanitize_dict",
    "rate_limit_k8s",
]
