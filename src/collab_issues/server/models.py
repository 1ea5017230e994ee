"""Pydantic models for the REST endpoints."""

from __future__ import annotations

from pydantic import BaseModel


class Health(BaseModel):
    status: str
    version: str
    connections: int
    issues: int
