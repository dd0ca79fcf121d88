from typing import List, Optional

from pydantic import BaseModel


class SessionResponse(BaseModel):
    session_key: str
    exists: bool
    session: Optional[dict] = None


class LocationItem(BaseModel):
    name: str
    checklist_item_id: str
    completed: bool


class LocationsResponse(BaseModel):
    work_order_id: str
    locations: List[LocationItem]
    formatted: List[str]
