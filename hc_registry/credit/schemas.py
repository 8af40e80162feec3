import datetime
from typing import Any

from pydantic import Field, field_validator, model_validator

from hc_registry.core.models.base import (
    CamelModel,
    CreditStatus,
    OwnershipEventType,
    RenewableSourceType,
)
from hc_registry.core.pagination import CreditPagination
from hc_registry.ledger.client import ADDRESS_PATTERN

# Detailed metadata


class Location(CamelModel):
    latitude: float | None = Field(default=None, ge=-90, le=90)
    longitude: float | None = Field(default=None, ge=-180, le=180)
    address: str | None = None


class ProductionFacility(CamelModel):
    name: str | None = None
    location: Location | None = None
    capacity: float | None = Field(
        default=None, ge=0, description="Electrolyser capacity in MW."
    )
    efficiency: float | None = Field(default=None, ge=0, le=100)


class ProductionDetails(CamelModel):
    start_date: datetime.datetime | None = None
    end_date: datetime.datetime | None = None
    total_energy_consumed: float | None = Field(
        default=None, ge=0, description="Energy consumed in MWh."
    )
    renewable_energy_percentage: float | None = Field(default=None, ge=0, le=100)
    carbon_intensity: float | None = Field(
        default=None, ge=0, description="kg CO2e per kg of hydrogen."
    )
    certification_standards: list[str] | None = None

    @model_validator(mode="after")
    def validate_production_period(self):
        if self.start_date and self.end_date and self.end_date < self.start_date:
            raise ValueError("endDate must not be before startDate")
        return self


class EnvironmentalImpact(CamelModel):
    co2_avoided: float | None = Field(default=None, ge=0)
    water_saved: float | None = Field(default=None, ge=0)
    land_use: float | None = Field(default=None, ge=0)


class QualityMetrics(CamelModel):
    purity: float | None = Field(default=None, ge=0, le=100)
    pressure: float | None = None
    temperature: float | None = None
    contaminants: list[str] | None = None


class CertificateDocument(CamelModel):
    name: str | None = None
    issuer: str | None = None
    issue_date: datetime.date | None = None
    expiry_date: datetime.date | None = None
    file_hash: str | None = None


class ReportDocument(CamelModel):
    title: str | None = None
    type: str | None = None
    date: datetime.date | None = None
    file_hash: str | None = None


class Documentation(CamelModel):
    certificates: list[CertificateDocument] | None = None
    reports: list[ReportDocument] | None = None


class DetailedMetadata(CamelModel):
    production_facility: ProductionFacility | None = None
    production_details: ProductionDetails | None = None
    environmental_impact: EnvironmentalImpact | None = None
    quality_metrics: QualityMetrics | None = None
    documentation: Documentation | None = None

    def to_document(self) -> dict[str, Any]:
        """JSON form stored on the credit record and fed to the metadata hash."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


# Requests


def _validate_address(v: str) -> str:
    v = v.strip()
    if not ADDRESS_PATTERN.match(v):
        raise ValueError("Invalid wallet address")
    return v.lower()


class IssueCreditRequest(CamelModel):
    producer_address: str = Field(
        description="Wallet address of the producer the credit is issued to."
    )
    renewable_source_type: RenewableSourceType
    hydrogen_amount: int = Field(gt=0, description="Hydrogen produced, in kg.")
    credit_amount: int = Field(gt=0, description="Number of credit units to mint.")
    metadata: DetailedMetadata = Field(default_factory=DetailedMetadata)
    tags: list[str] = Field(default_factory=list)
    notes: str | None = Field(default=None, max_length=2000)

    @field_validator("producer_address")
    def validate_producer_address(cls, v: str) -> str:
        return _validate_address(v)


class TransferCreditRequest(CamelModel):
    credit_id: int = Field(ge=0)
    recipient_address: str
    amount: int = Field(gt=0)

    @field_validator("recipient_address")
    def validate_recipient_address(cls, v: str) -> str:
        return _validate_address(v)


class RetireCreditRequest(CamelModel):
    credit_id: int = Field(ge=0)
    amount: int = Field(gt=0)
    reason: str = Field(min_length=1, max_length=500)


# Responses


class OwnershipEntry(CamelModel):
    owner: int
    from_owner: int | None = None
    amount: int
    transaction_hash: str
    timestamp: datetime.datetime
    type: OwnershipEventType


class CreditRead(CamelModel):
    credit_id: int
    blockchain_tx_hash: str
    producer_id: int
    certifier_id: int
    current_owner_id: int
    renewable_source_type: RenewableSourceType
    hydrogen_amount: int
    credit_amount: int
    metadata_hash: str
    detailed_metadata: dict
    status: CreditStatus
    current_balance: int
    is_retired: bool
    holdings: dict[str, int]
    ownership_history: list[OwnershipEntry]
    retirement_details: dict | None = None
    is_verified: bool
    verification_status: dict
    tags: list[str]
    notes: str | None = None
    version: int
    created_at: datetime.datetime
    updated_at: datetime.datetime


class CreditResponse(CamelModel):
    credit: CreditRead


class CreditOperationResponse(CamelModel):
    message: str
    credit: CreditRead
    transaction_hash: str
    block_number: int | None = None


class CreditPageResponse(CamelModel):
    credits: list[CreditRead]
    pagination: CreditPagination


class CreditStatisticsResponse(CamelModel):
    total_credits: int
    total_hydrogen: int
    active_credits: int
    retired_credits: int
