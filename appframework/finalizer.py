"""Finalizer handling on objects that carry Kubernetes metadata."""

from __future__ import annotations

from typing import Any

FINALIZER_ID = "app.dac.nokia.com"


def _metadata(obj: Any) -> Any:
    metadata = getattr(obj, "metadata", None)
    if metadata is None or not hasattr(metadata, "finalizers"):
        raise TypeError(f"{type(obj).__name__} object has no metadata finalizers")
    return metadata


def get_finalizers(obj: Any) -> list[str]:
    """Return the finalizers of ``obj``."""
    return list(_metadata(obj).finalizers)


def add_finalizer(obj: Any, value: str) -> None:
    """Add ``value`` to the finalizers of ``obj``, keeping them unique and sorted."""
    metadata = _metadata(obj)
    metadata.finalizers = sorted(set(metadata.finalizers) | {value})


def remove_finalizer(obj: Any, value: str) -> list[str]:
    """Remove ``value`` from the finalizers of ``obj`` and return the new list."""
    metadata = _metadata(obj)
    finalizers = sorted(set(metadata.finalizers) - {value})
    metadata.finalizers = finalizers
    return list(finalizers)


def has_finalizers(obj: Any) -> bool:
    """Tell whether ``obj`` carries any finalizer."""
    try:
        return bool(get_finalizers(obj))
    except TypeError:
        return False