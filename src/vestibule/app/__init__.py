"""Vestibule service application.

The consumer side of the framework: every router, middleware, error
handler and lifespan hook is auto-discovered from the ``vestibule.*``
entry point groups.

Usage::

    from vestibule.app import create_application

    app = create_application()
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from vestibule.infra.fastapi import AppSettings, create_app

if TYPE_CHECKING:
    from fastapi import FastAPI


def create_application(
    settings: AppSettings | None = None,
    *,
    exclude_names: frozenset[str] | None = None,
) -> FastAPI:
    """Create the Vestibule service.

    Args:
        settings: Application settings. If ``None``, loaded from environment.
        exclude_names: Entry-point names to suppress.
    """
    return create_app(settings=settings, exclude_names=exclude_names)


__all__ = ["create_application"]
