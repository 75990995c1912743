# services/notification_api.py
from typing import List

from infra.http_client import ApiClient
from models.schemas import Notification


class NotificationApi:
    def __init__(self, api: ApiClient):
        self.api = api

    async def list(self) -> List[Notification]:
        data = await self.api.get("/notifications")
        return [Notification.model_validate(item) for item in (data or [])]

    async def unread_count(self) -> int:
        return int(await self.api.get("/notifications/unread-count") or 0)

    async def mark_read(self, notification_id: str):
        await self.api.put(f"/notifications/{notification_id}/read")

    async def mark_all_read(self):
        await self.api.put("/notifications/read-all")
