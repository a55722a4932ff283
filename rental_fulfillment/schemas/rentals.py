from datetime import date
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict


class SubmitBookingDto(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    unitID: Optional[int] = None
    modelName: Optional[str] = None
    startDate: date
    endDate: date
    customerID: Optional[int] = None
    customerName: Optional[str] = None
    customerContact: Optional[str] = None
    customerEmail: Optional[str] = None
    initialStatus: Literal["pending", "confirmed"] = "pending"
    allowOverlap: bool = False


class UpdatePotentialBookingDto(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    unitID: Optional[int] = None
    startDate: Optional[date] = None
    endDate: Optional[date] = None
    customerName: Optional[str] = None
    customerContact: Optional[str] = None
    customerEmail: Optional[str] = None


class RejectRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    reason: str


class CancelRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    reason: str


class ResolveConflictRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    strategy: Literal["confirm_anyway", "transfer", "reject_competitors"]
    targetUnitID: Optional[int] = None
    rejectRentalIDs: List[int] = []
    reason: Optional[str] = None


class RedistributeRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    modelName: str


class ShippingEventRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    event: Literal[
        "ready_to_ship",
        "in_transit_to_user",
        "delivered",
        "return_scheduled",
        "in_transit_to_owner",
        "returned",
    ]


class ExtensionRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    newEndDate: date


class ExtensionDecisionRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    decision: Literal["approve", "reject"]
    notes: Optional[str] = None
