# services/auth_service.py
import logging
from typing import List, Optional

from core.auth import SessionContext
from core.errors import ClientValidationError
from infra.http_client import ApiClient
from models.user import AuthResult, Role

logger = logging.getLogger(__name__)


class AuthService:
    """
    /auth endpoints. login() and firebase_login() install the returned
    identity into the session; register() only creates the account.
    """

    def __init__(self, api: ApiClient, session: SessionContext):
        self.api = api
        self.session = session

    async def login(self, email: str, password: str) -> AuthResult:
        if not email or not password:
            raise ClientValidationError("Email and password are required", field="email" if not email else "password")
        data = await self.api.post("/auth/login", json={"email": email, "password": password})
        result = AuthResult.model_validate(data)
        self.session.login(result)
        return result

    async def firebase_login(self, id_token: str, role: Optional[Role] = None,
                             name: Optional[str] = None, email: Optional[str] = None) -> AuthResult:
        if not id_token:
            raise ClientValidationError("ID Token is required", field="id_token")
        payload = {"idToken": id_token, "role": role.value if role else None, "name": name, "email": email}
        data = await self.api.post("/auth/firebase-login", json={k: v for k, v in payload.items() if v is not None})
        result = AuthResult.model_validate(data)
        self.session.login(result)
        return result

    async def register(self, name: str, email: str, password: str, role: Role = Role.CLIENT,
                       phone: Optional[str] = None, shop_name: Optional[str] = None,
                       address: Optional[str] = None, shop_types: Optional[List[str]] = None,
                       open_time: Optional[str] = None, close_time: Optional[str] = None,
                       latitude: Optional[float] = None, longitude: Optional[float] = None,
                       services_offered: Optional[str] = None) -> AuthResult:
        if role == Role.MECHANIC and not shop_name:
            raise ClientValidationError("Shop name is required for mechanics", field="shop_name")
        payload = {
            "name": name,
            "email": email,
            "password": password,
            "phone": phone,
            "role": role.value,
            "shopName": shop_name,
            "address": address,
            "shopTypes": shop_types,
            "openTime": open_time,
            "closeTime": close_time,
            "latitude": latitude,
            "longitude": longitude,
            "servicesOffered": services_offered,
        }
        data = await self.api.post("/auth/register", json={k: v for k, v in payload.items() if v is not None})
        logger.info("Registered %s account for %s", role.value, email)
        return AuthResult.model_validate(data)

    def logout(self):
        self.session.teardown("logout")
