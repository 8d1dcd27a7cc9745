"""Backup health and alert schemas."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel

from app.models.alert import AlertKind


class BackupHealthRead(BaseModel):
    status: Literal["healthy", "warning", "critical"]
    issues: list[str]
    recommendations: list[str]


class AlertCreate(BaseModel):
    kind: AlertKind
    message: str


class AlertRead(BaseModel):
    alert_id: str
    kind: str
    message: str
    created_at: str | None = None
    acknowledged: bool
    acknowledged_at: str | None = None
