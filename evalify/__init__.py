"""Evalify: academic quiz and exam management backend.

The package is split into models, repositories, services and FastAPI
routers; `evalify.main:app` is the ASGI entrypoint.
"""
