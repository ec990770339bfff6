import base64
import datetime as dt
import json
import os
from urllib.parse import parse_qs

import httpx
import pytest
from fakeredis import aioredis as fakeredis
from jose import jwt

# required settings must exist before the application module is imported
for _name, _value in {
    "MICROSOFT_TENANT_ID": "tenant-123",
    "MICROSOFT_CLIENT_ID": "client-abc",
    "MICROSOFT_CLIENT_SECRET": "client-secret",
    "TEAM_DOMAIN": "example.cloudflareaccess.com",
    "POLICY_AUD": "policy-aud",
}.items():
    os.environ.setdefault(_name, _value)

from posture_bridge.core.config import Settings  # noqa: E402
from posture_bridge.core.security import JWKSCache  # noqa: E402


SIGNING_SECRET = "posture-bridge-test-signing-secret"
SIGNING_KID = "test-kid"


def _b64url(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode()


JWKS = {
    "keys": [
        {"kty": "oct", "kid": SIGNING_KID, "alg": "HS256", "use": "sig", "k": _b64url(SIGNING_SECRET.encode())},
    ]
}


def make_assertion(
    aud: str = "policy-aud",
    expires_in: int = 300,
    kid: str = SIGNING_KID,
    secret: str = SIGNING_SECRET,
    **claims,
) -> str:
    now = dt.datetime.now(dt.timezone.utc)
    payload = {
        "aud": [aud],
        "email": "posture@example.com",
        "iat": int(now.timestamp()),
        "nbf": int(now.timestamp()),
        "exp": int((now + dt.timedelta(seconds=expires_in)).timestamp()),
        "type": "app",
    }
    payload.update(claims)
    return jwt.encode(payload, secret, algorithm="HS256", headers={"kid": kid})


def defender_machine(machine_id: str, **fields) -> dict:
    record = {
        "id": machine_id,
        "computerDnsName": None,
        "ipAddresses": [],
        "lastExternalIpAddress": "203.0.113.10",
        "deviceTag": None,
        "aadDeviceId": None,
        "lastSeen": "2024-05-01T10:00:00Z",
        "riskScore": "Low",
        "exposureLevel": "Low",
    }
    record.update(fields)
    return record


class FakeProviders:
    """Identity provider, Defender API and Access JWKS behind one MockTransport."""

    def __init__(self, settings: Settings):
        self.settings = settings
        self.requests: list[httpx.Request] = []
        # each responder takes the request and returns a fresh httpx.Response
        self.token_response = lambda request: httpx.Response(200, json={"access_token": "defender-token", "expires_in": 3599})
        self.machines_response = lambda request: httpx.Response(200, json={"value": []})
        self.jwks_response = lambda request: httpx.Response(200, json=JWKS)

    def calls_to(self, url: str) -> list[httpx.Request]:
        return [r for r in self.requests if str(r.url) == url]

    def token_form(self, index: int = -1) -> dict:
        request = self.calls_to(self.settings.token_endpoint)[index]
        return {k: v[0] for k, v in parse_qs(request.content.decode()).items()}

    def set_machines(self, machines: list[dict]) -> None:
        self.machines_response = lambda request: httpx.Response(200, json={"value": machines})

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        url = str(request.url)
        if url == self.settings.token_endpoint:
            return self.token_response(request)
        if url == self.settings.defender_machines_url:
            return self.machines_response(request)
        if url == self.settings.jwks_url:
            return self.jwks_response(request)
        return httpx.Response(404, text=json.dumps({"error": f"unexpected {url}"}))

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))


@pytest.fixture()
def settings() -> Settings:
    return Settings(
        microsoft_tenant_id="tenant-123",
        microsoft_client_id="client-abc",
        microsoft_client_secret="client-secret",
        team_domain="example.cloudflareaccess.com",
        policy_aud="policy-aud",
        access_jwt_algorithms=["HS256"],
        redis_url=None,
    )


@pytest.fixture()
def providers(settings) -> FakeProviders:
    return FakeProviders(settings)


@pytest.fixture()
async def http_client(providers):
    async with providers.client() as client:
        yield client


@pytest.fixture()
def jwks_cache() -> JWKSCache:
    return JWKSCache()


@pytest.fixture()
async def redis():
    client = fakeredis.FakeRedis(decode_responses=True)
    try:
        yield client
    finally:
        await client.flushall()
        await client.aclose()
