# lifecycle_core/workflows/runtime.py

"""
Workflow runtime error taxonomy.

These are DRF exceptions so views can let them propagate and the framework
maps them to responses:

- InvalidTransition   -> 400 (advance past terminal, move back from first stage,
                              no active step, double initialization)
- TransitionConflict  -> 409 (concurrent or stale transition, retryable)

Missing projects use rest_framework.exceptions.NotFound (404); authorization
denials live in lifecycle_core.permissions (403).

This module MUST remain free of persistence logic.
"""

from rest_framework import status
from rest_framework.exceptions import APIException


class InvalidTransition(APIException):
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = "Invalid workflow transition."
    default_code = "invalid_transition"


class TransitionConflict(APIException):
    status_code = status.HTTP_409_CONFLICT
    default_detail = (
        "The workflow was changed by another request. Reload and retry."
    )
    default_code = "conflict"
