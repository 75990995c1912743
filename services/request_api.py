"""
Repair-request endpoints, split by role.

Client:   POST /requests, POST /client/sos, GET /requests/my-requests,
          POST /client/rate-request/{id}
Mechanic: /mechanic/incoming-requests, active-jobs, completed-jobs,
          work-history, accept-request/{id}, reject-request/{id},
          update-status/{id}, active-locations, toggle-availability

Every mutation either returns the parsed model or raises an ApiError
subclass; there is no "soft" failure return.
"""
import logging
from typing import List, Optional

from core.errors import ClientValidationError
from infra.http_client import ApiClient
from models.schemas import (
    CreateRequestPayload,
    GeoPosition,
    RepairRequest,
    RequestStatus,
    RequestType,
    VehicleType,
)

logger = logging.getLogger(__name__)


def _requests(data) -> List[RepairRequest]:
    return [RepairRequest.model_validate(item) for item in (data or [])]


class ClientRequestApi:
    def __init__(self, api: ApiClient):
        self.api = api

    async def create(self, position: Optional[GeoPosition], vehicle_type: VehicleType,
                     problem_description: Optional[str] = None, mechanic_shop_id: Optional[str] = None,
                     address: Optional[str] = None, ai_suggestion: Optional[str] = None,
                     broadcast_id: Optional[str] = None,
                     request_type: RequestType = RequestType.NORMAL) -> RepairRequest:
        """Raises ClientValidationError without touching the network if there's no position yet."""
        if position is None:
            raise ClientValidationError("Location not available yet. Enable location and try again.",
                                        field="client_location")
        if vehicle_type in (None, VehicleType.UNKNOWN):
            raise ClientValidationError("Select a vehicle type", field="vehicle_type")
        payload = CreateRequestPayload(
            mechanic_shop_id=mechanic_shop_id,
            vehicle_type=vehicle_type,
            problem_description=problem_description,
            type=request_type,
            client_location=position.as_location(),
            client_address=address,
            ai_suggestion=ai_suggestion,
            broadcast_id=broadcast_id,
        )
        data = await self.api.post("/requests", json=payload.model_dump(by_alias=True, exclude_none=True, mode="json"))
        request = RepairRequest.model_validate(data)
        logger.info("Created request %s (shop=%s broadcast=%s)", request.id, mechanic_shop_id, broadcast_id)
        return request

    async def sos(self, position: Optional[GeoPosition], address: Optional[str] = None) -> RepairRequest:
        if position is None:
            raise ClientValidationError("Location is required to send an SOS", field="location")
        data = await self.api.post("/client/sos", json={"location": position.as_location(), "address": address})
        request = RepairRequest.model_validate(data)
        logger.warning("SOS request %s sent", request.id)
        return request

    async def my_requests(self) -> List[RepairRequest]:
        return _requests(await self.api.get("/requests/my-requests"))

    async def rate(self, request_id: str, rating: int, review: Optional[str] = None):
        if not 1 <= rating <= 5:
            raise ClientValidationError("Rating must be between 1 and 5", field="rating")
        await self.api.post(f"/client/rate-request/{request_id}", json={"rating": rating, "review": review})


class MechanicRequestApi:
    def __init__(self, api: ApiClient):
        self.api = api

    async def incoming(self) -> List[RepairRequest]:
        return _requests(await self.api.get("/mechanic/incoming-requests"))

    async def active(self) -> List[RepairRequest]:
        return _requests(await self.api.get("/mechanic/active-jobs"))

    async def completed(self) -> List[RepairRequest]:
        return _requests(await self.api.get("/mechanic/completed-jobs"))

    async def work_history(self) -> List[RepairRequest]:
        return _requests(await self.api.get("/mechanic/work-history"))

    async def accept(self, request_id: str) -> RepairRequest:
        return RepairRequest.model_validate(await self.api.post(f"/mechanic/accept-request/{request_id}"))

    async def reject(self, request_id: str) -> RepairRequest:
        return RepairRequest.model_validate(await self.api.post(f"/mechanic/reject-request/{request_id}"))

    async def update_status(self, request_id: str, status: RequestStatus) -> RepairRequest:
        data = await self.api.post(f"/mechanic/update-status/{request_id}", json={"status": status.value})
        return RepairRequest.model_validate(data)

    async def active_locations(self) -> List[RepairRequest]:
        """Accepted requests with client locations, for the mechanic's map."""
        return _requests(await self.api.get("/mechanic/active-locations"))

    async def toggle_availability(self, available: bool) -> bool:
        data = await self.api.post("/mechanic/toggle-availability", json={"available": available})
        if isinstance(data, dict) and "isAvailable" in data:
            return bool(data["isAvailable"])
        return available
