"""Utility modules for the pharmacy kernel."""

from pharmacy_kernel.utils.serialization import model_snapshot, to_jsonable

__all__ = ["model_snapshot", "to_jsonable"]
