from datetime import date, datetime
from typing import List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, field_validator


class CreateOrderItemDto(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    productID: int
    quantity: int = 1
    unitPrice: Optional[int] = None


class CreateOrderDto(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    outletID: int
    customerID: Optional[int] = None
    orderType: Literal["RENT", "SALE"] = "RENT"
    # A bare YYYY-MM-DD stays a date: pickup expands to start of day, return to end of day.
    pickupPlanAt: Optional[Union[datetime, date]] = None
    returnPlanAt: Optional[Union[datetime, date]] = None
    depositAmount: Optional[int] = None
    notes: Optional[str] = None
    items: List[CreateOrderItemDto] = []

    @field_validator("pickupPlanAt", "returnPlanAt", mode="before")
    @classmethod
    def _keep_date_only(cls, value):
        if isinstance(value, str) and len(value.strip()) == 10:
            return date.fromisoformat(value.strip())
        return value


class ReturnOrderRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    notes: Optional[str] = None


class CancelOrderRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    reason: Optional[str] = None
