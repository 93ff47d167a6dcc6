"""Pydantic request/response models for the Health Facility Registry API."""

from __future__ import annotations

from pydantic import BaseModel, Field


class ImportCSVRequest(BaseModel):
    csv_file_path: str = Field(
        ...,
        description="Path to a CSV file readable by the server",
    )
    update_existing: bool = Field(
        False,
        description="If true, overwrite facilities whose New Facility ID already exists instead of skipping them",
    )


class SkippedRecordOut(BaseModel):
    identifier: str = Field(..., description="New Facility ID, or 'Row N' when the ID is blank")
    reason: str


class ImportSummary(BaseModel):
    states: int = Field(..., description="Distinct states seen in the file")
    regions: int = Field(..., description="Distinct (state, region) pairs seen in the file")
    districts: int = Field(..., description="Distinct (state, region, district) triples seen in the file")
    facility_types: int
    ownerships: int
    operational_statuses: int
    health_facilities: int = Field(..., description="Facilities inserted")
    updated_facilities: int = Field(..., description="Existing facilities overwritten (update mode only)")
    skipped_count: int = Field(..., description="Total skipped records")
    skipped_records: list[SkippedRecordOut] = Field(
        default_factory=list,
        description="First 100 skip reasons",
    )


class ImportResponse(BaseModel):
    success: bool = True
    message: str
    data: ImportSummary
