from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict


class PlanChangeRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    planID: int
    effectiveDate: Optional[datetime] = None
    reason: Optional[str] = None


class ExtensionQuoteRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    periods: int = 1
    extensionStart: Optional[datetime] = None
