"""Pydantic models for the DNSimple API v2 requests and responses."""

from __future__ import annotations

from pydantic import BaseModel

# ── Identity ─────────────────────────────────────────────────────────────────


class Account(BaseModel):
    id: int
    email: str = ""
    plan_identifier: str | None = None


class User(BaseModel):
    id: int
    email: str = ""


class Whoami(BaseModel):
    account: Account | None = None
    user: User | None = None


# ── Zone records ─────────────────────────────────────────────────────────────


class ZoneRecordAttributes(BaseModel):
    name: str
    type: str = "TXT"
    content: str
    ttl: int | None = None


class ZoneRecord(BaseModel):
    id: int
    zone_id: str = ""
    name: str
    type: str
    content: str
    ttl: int | None = None
    created_at: str | None = None


class ZoneDistribution(BaseModel):
    distributed: bool
