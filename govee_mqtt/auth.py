"""Account authentication against the Govee app API.

The documented platform API only needs an API key, but AWS IoT access
(the low-latency control channel) requires logging into the app API with
the account email and password. Tokens and the decoded IoT certificate are
cached in a JSON file so restarts do not trigger a fresh login.
"""

from __future__ import annotations

import asyncio
import base64
import hashlib
import json
import logging
import uuid
from dataclasses import asdict, dataclass, fields, replace
from datetime import datetime, timedelta, timezone
from typing import Any

import httpx
from cryptography.hazmat.primitives.serialization import (
    Encoding,
    NoEncryption,
    PrivateFormat,
)
from cryptography.hazmat.primitives.serialization.pkcs12 import (
    load_key_and_certificates,
)

from .const import APP_API_BASE_URL
from .storage import JsonStore

_LOGGER = logging.getLogger(__name__)

REFRESH_OFFSET = timedelta(seconds=60)
LOGIN_ENDPOINT = f"{APP_API_BASE_URL}/account/rest/account/v1/login"
REFRESH_ENDPOINT = f"{APP_API_BASE_URL}/account/rest/v1/first/refresh-tokens"
IOT_KEY_ENDPOINT = f"{APP_API_BASE_URL}/app/v1/account/iot/key"
DEVICE_LIST_ENDPOINT = f"{APP_API_BASE_URL}/device/rest/devices/v1/list"
APP_VERSION = "5.6.01"
USER_AGENT = (
    "GoveeHome/"
    f"{APP_VERSION}"
    " (com.ihoment.GoVeeSensor; build:2; iOS 16.5.0) Alamofire/5.6.4"
)
CLIENT_TYPE = "1"


class AuthError(RuntimeError):
    """Raised when the app API rejects or garbles an auth exchange."""


@dataclass(frozen=True)
class IoTBundle:
    """Persisted IoT connection metadata."""

    account_id: str
    client_id: str
    topic: str
    endpoint: str
    certificate: str
    private_key: str


@dataclass(frozen=True)
class AccountAuthDetails:
    """Complete account authentication state."""

    email: str
    account_id: str
    client_id: str
    topic: str
    access_token: str
    refresh_token: str
    expires_at: datetime
    iot_endpoint: str | None = None
    iot_certificate: str | None = None
    iot_private_key: str | None = None

    @classmethod
    def from_login_payload(
        cls, email: str, payload: dict[str, Any]
    ) -> AccountAuthDetails:
        """Create auth details from the ``client`` block of a login reply."""

        return cls(
            email=email,
            account_id=str(payload["accountId"]),
            client_id=payload["client"],
            topic=payload.get("topic", ""),
            access_token=payload["token"],
            refresh_token=payload["refreshToken"],
            expires_at=_expiry(payload["tokenExpireCycle"]),
        )

    @classmethod
    def from_storage(cls, data: dict[str, Any]) -> AccountAuthDetails:
        values = {field.name: data[field.name] for field in fields(cls) if field.name in data}
        values["expires_at"] = datetime.fromisoformat(data["expires_at"])
        return cls(**values)

    def as_storage(self) -> dict[str, Any]:
        data = asdict(self)
        data["expires_at"] = self.expires_at.isoformat()
        return data

    def should_refresh(self, now: datetime | None = None) -> bool:
        """Return True once ``now`` is within the refresh window."""

        return (now or datetime.now(timezone.utc)) >= self.expires_at - REFRESH_OFFSET

    def headers(self) -> dict[str, str]:
        """Return app API headers carrying this account's bearer token."""

        headers = _base_headers(self.client_id)
        headers["Authorization"] = f"Bearer {self.access_token}"
        return headers

    def as_iot_bundle(self) -> IoTBundle | None:
        """Expose an IoT bundle if certificate data is available."""

        if not (self.iot_endpoint and self.iot_certificate and self.iot_private_key):
            return None
        return IoTBundle(
            account_id=self.account_id,
            client_id=self.client_id,
            topic=self.topic,
            endpoint=self.iot_endpoint,
            certificate=self.iot_certificate,
            private_key=self.iot_private_key,
        )


def _expiry(cycle: Any) -> datetime:
    return datetime.now(timezone.utc) + timedelta(seconds=int(cycle))


def _generate_client_id(email: str) -> str:
    """Derive a stable client identifier for ``email``."""

    seed = f"{email}{uuid.getnode()}"
    return hashlib.md5(seed.encode("utf-8")).hexdigest()


def _base_headers(client_id: str) -> dict[str, str]:
    """Return the baseline headers expected by the Govee app API."""

    return {
        "clientType": CLIENT_TYPE,
        "Content-Type": "application/json",
        "Accept": "application/json",
        "iotVersion": "0",
        "clientId": client_id,
        "User-Agent": USER_AGENT,
        "appVersion": APP_VERSION,
    }


def _decode_p12_bundle(certificate_b64: str, password: str) -> tuple[str, str]:
    """Decode a P12 bundle into PEM certificate and private key."""

    data = base64.b64decode(certificate_b64)
    private_key, certificate, _extra = load_key_and_certificates(
        data, password.encode("utf-8")
    )
    if private_key is None or certificate is None:
        raise AuthError("P12 bundle missing required certificate components")
    certificate_pem = certificate.public_bytes(Encoding.PEM).decode("utf-8").strip()
    private_key_pem = (
        private_key.private_bytes(Encoding.PEM, PrivateFormat.PKCS8, NoEncryption())
        .decode("utf-8")
        .strip()
    )
    return certificate_pem, private_key_pem


def _device_settings(entry: dict[str, Any]) -> dict[str, Any]:
    """Return the ``deviceSettings`` of an app API device entry as a dict."""

    ext = entry.get("deviceExt") or {}
    settings = ext.get("deviceSettings") or {}
    if isinstance(settings, str):
        try:
            settings = json.loads(settings)
        except ValueError:
            return {}
    return settings if isinstance(settings, dict) else {}


class GoveeAuthManager:
    """Manage the app API login, token refresh and IoT credentials."""

    def __init__(self, store: JsonStore, client: httpx.AsyncClient) -> None:
        """Bind the credential store and the HTTP client used for requests."""

        self._client = client
        self._store = store
        self._tokens: AccountAuthDetails | None = None
        self._store_lock = asyncio.Lock()

    @property
    def tokens(self) -> AccountAuthDetails | None:
        """Return the current token details."""

        return self._tokens

    async def async_initialize(self) -> None:
        """Load persisted tokens from disk."""

        data = await self._store.async_load()
        if not data:
            return
        try:
            self._tokens = AccountAuthDetails.from_storage(data)
        except (KeyError, TypeError, ValueError) as err:
            _LOGGER.warning("Discarding stored credentials: %s", err)

    async def async_ensure_login(self, email: str, password: str) -> AccountAuthDetails:
        """Reuse stored credentials for ``email`` or log in afresh."""

        tokens = self._tokens
        if tokens is not None and tokens.email == email:
            if tokens.should_refresh():
                return await self._refresh_tokens()
            return tokens
        return await self.async_login(email, password)

    async def async_login(self, email: str, password: str) -> AccountAuthDetails:
        """Login with the provided credentials and persist the resulting tokens."""

        client_id = _generate_client_id(email)
        try:
            response = await self._client.post(
                LOGIN_ENDPOINT,
                json={"email": email, "password": password, "client": client_id},
                headers=_base_headers(client_id),
            )
            response.raise_for_status()
        except httpx.HTTPError:
            await self._clear_tokens()
            raise

        payload = response.json()
        login_data = payload.get("client") if isinstance(payload, dict) else None
        if not isinstance(login_data, dict):
            message = payload.get("message") if isinstance(payload, dict) else None
            raise AuthError(f"Invalid login response: {message or payload!r}")
        tokens = AccountAuthDetails.from_login_payload(email, login_data)
        tokens = await self._fetch_iot_credentials(tokens)
        _LOGGER.info("Logged into Govee account %s", tokens.account_id)
        return await self._store_tokens(tokens)

    async def async_get_access_token(self) -> str:
        """Return a valid access token, refreshing if necessary."""

        if self._tokens is None:
            raise AuthError("No credentials loaded")

        if self._tokens.should_refresh():
            await self._refresh_tokens()

        assert self._tokens is not None
        return self._tokens.access_token

    async def async_get_iot_bundle(self) -> IoTBundle | None:
        """Expose persisted IoT credentials, if available."""

        if self._tokens is None:
            return None
        return self._tokens.as_iot_bundle()

    async def async_get_device_topics(self) -> dict[str, str]:
        """Return a mapping of device id to its AWS IoT command topic."""

        await self.async_get_access_token()
        assert self._tokens is not None
        response = await self._client.post(
            DEVICE_LIST_ENDPOINT, headers=self._tokens.headers()
        )
        response.raise_for_status()
        payload = response.json()
        topics: dict[str, str] = {}
        for entry in payload.get("devices") or []:
            device_id = entry.get("device")
            topic = _device_settings(entry).get("topic")
            if isinstance(device_id, str) and isinstance(topic, str) and topic:
                topics[device_id] = topic
        return topics

    async def _refresh_tokens(self) -> AccountAuthDetails:
        """Refresh the stored token using the refresh token."""

        if self._tokens is None:
            raise AuthError("No credentials to refresh")
        try:
            response = await self._client.post(
                REFRESH_ENDPOINT,
                json={"refreshToken": self._tokens.refresh_token},
                headers=self._tokens.headers(),
            )
            response.raise_for_status()
        except httpx.HTTPError:
            await self._clear_tokens()
            raise
        payload = response.json()
        refresh_data = payload.get("data") if isinstance(payload, dict) else None
        if not isinstance(refresh_data, dict):
            raise AuthError("Invalid refresh response")
        tokens = replace(
            self._tokens,
            access_token=refresh_data["token"],
            refresh_token=refresh_data["refreshToken"],
            expires_at=_expiry(refresh_data["tokenExpireCycle"]),
        )
        tokens = await self._fetch_iot_credentials(tokens)
        return await self._store_tokens(tokens)

    async def _fetch_iot_credentials(
        self, tokens: AccountAuthDetails
    ) -> AccountAuthDetails:
        """Retrieve and decode IoT credentials for the account."""

        response = await self._client.get(
            IOT_KEY_ENDPOINT,
            headers=tokens.headers(),
        )
        response.raise_for_status()
        payload = response.json()
        data = payload.get("data") if isinstance(payload, dict) else None
        if not isinstance(data, dict):
            raise AuthError("Invalid IoT credential payload")
        certificate_b64 = data.get("p12")
        password = data.get("p12Pass")
        endpoint = data.get("endpoint") or data.get("brokerUrl")
        if not certificate_b64 or not password or not endpoint:
            raise AuthError("Incomplete IoT credential payload")
        certificate, private_key = _decode_p12_bundle(certificate_b64, password)
        return replace(
            tokens,
            iot_endpoint=endpoint,
            iot_certificate=certificate,
            iot_private_key=private_key,
        )

    async def _store_tokens(self, tokens: AccountAuthDetails) -> AccountAuthDetails:
        """Persist and cache the provided tokens."""

        async with self._store_lock:
            await self._store.async_save(tokens.as_storage())
        self._tokens = tokens
        return tokens

    async def _clear_tokens(self) -> None:
        """Remove any cached tokens from memory and disk."""

        self._tokens = None
        async with self._store_lock:
            await self._store.async_remove()
