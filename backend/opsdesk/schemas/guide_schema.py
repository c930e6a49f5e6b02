# backend/opsdesk/schemas/guide_schema.py
from typing import List, Optional, Union

from pydantic import BaseModel, ConfigDict


class GuideIn(BaseModel):
    model_config = ConfigDict(extra="allow")
    id: Union[int, str]
    selected: bool = False
    phone: Optional[str] = None
    recipient: Optional[str] = None
    tracking_number: Optional[str] = None
    address: Optional[str] = None
    order_number: Optional[str] = None


class SendGuidesIn(BaseModel):
    guides: List[GuideIn] = []
    transport: Optional[str] = None
