"""Public entry points for the FilmRate client."""

from __future__ import annotations

from app.main import AppServices, app, build_services, create_app

__all__ = ["AppServices", "app", "build_services", "create_app"]
