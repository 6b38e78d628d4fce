"""ID document scanning service: extraction, review and record keeping.

Serve it with ``uvicorn id_scanner.main:create_app --factory`` or the
``id-scanner`` console script.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:  # pragma: no cover
    from .main import create_app


def __getattr__(name: str):
    if name == "create_app":
        from .main import create_app  # local import to avoid importing FastAPI eagerly

        return create_app
    raise AttributeError(f"module 'id_scanner' has no attribute {name!r}")


__all__ = ["create_app"]
