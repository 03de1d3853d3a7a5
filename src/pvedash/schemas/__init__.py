"""Pydantic schemas for the dashboard backend's request/response contracts.

Learn: Everything crossing the HTTP boundary is validated here, so the
cache and the live client only ever see well-formed values.
"""
