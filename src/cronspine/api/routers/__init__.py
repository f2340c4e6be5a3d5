"""Routers mounted by :func:`cronspine.api.app.create_app`."""
