# services/profile_api.py
import logging
import re
from typing import List, Optional

from core.errors import ClientValidationError
from infra.http_client import ApiClient
from models.schemas import Diagnosis, MechanicShop, Rating, UserProfile

logger = logging.getLogger(__name__)

_PHONE_RE = re.compile(r"^[0-9]{10}$")
_HHMM_RE = re.compile(r"^([01]?\d|2[0-3]):[0-5]\d$")


class ProfileApi:
    """Profile, shop settings, ratings and the AI diagnosis helper."""

    def __init__(self, api: ApiClient):
        self.api = api

    async def get_profile(self) -> UserProfile:
        return UserProfile.model_validate(await self.api.get("/user/profile"))

    async def update_profile(self, name: str, phone: Optional[str] = None) -> UserProfile:
        if not name or not name.strip():
            raise ClientValidationError("Name is required", field="name")
        if phone and not _PHONE_RE.match(phone):
            raise ClientValidationError("Phone number must be 10 digits", field="phone")
        data = await self.api.put("/user/profile", json={"name": name.strip(), "phone": phone})
        return UserProfile.model_validate(data)

    async def update_shop(self, shop_name: str, address: str, open_time: str, close_time: str,
                          is_available: Optional[bool] = None,
                          services_offered: Optional[str] = None) -> MechanicShop:
        for field, value in (("shop_name", shop_name), ("address", address)):
            if not value or not value.strip():
                raise ClientValidationError(f"{field.replace('_', ' ').capitalize()} is required", field=field)
        for field, value in (("open_time", open_time), ("close_time", close_time)):
            if not value or not _HHMM_RE.match(value):
                raise ClientValidationError("Times must be HH:MM", field=field)
        payload = {
            "shopName": shop_name,
            "address": address,
            "openTime": open_time,
            "closeTime": close_time,
            "isAvailable": is_available,
            "servicesOffered": services_offered,
        }
        data = await self.api.put("/mechanic/update-shop", json={k: v for k, v in payload.items() if v is not None})
        return MechanicShop.model_validate(data)

    async def submit_rating(self, user_id: str, mechanic_shop_id: str, rating: int,
                            request_id: Optional[str] = None) -> Rating:
        if not isinstance(rating, int) or not 1 <= rating <= 5:
            raise ClientValidationError("Rating must be between 1 and 5", field="rating")
        data = await self.api.post("/ratings", json={
            "userId": user_id,
            "mechanicShopId": mechanic_shop_id,
            "rating": rating,
            "requestId": request_id,
        })
        return Rating.model_validate(data)

    async def shop_ratings(self, shop_id: str) -> List[Rating]:
        # this endpoint answers with a bare list, not the envelope
        data = await self.api.get(f"/ratings/shop/{shop_id}")
        return [Rating.model_validate(item) for item in (data or [])]

    async def diagnose(self, issue_description: str, make: Optional[str] = None,
                       model: Optional[str] = None, year: Optional[int] = None) -> Diagnosis:
        if not issue_description or not issue_description.strip():
            raise ClientValidationError("Describe the problem first", field="issue_description")
        data = await self.api.post("/ai/diagnose", json={
            "issueDescription": issue_description,
            "make": make,
            "model": model,
            "year": year,
        })
        return Diagnosis.model_validate(data)
