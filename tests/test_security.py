import httpx
import pytest

from posture_bridge.core.errors import AuthVerificationError
from posture_bridge.core.security import verify_access_assertion

from conftest import JWKS, make_assertion


@pytest.mark.asyncio
async def test_valid_assertion_is_accepted(settings, providers, http_client, jwks_cache):
    claims = await verify_access_assertion(make_assertion(), settings, http_client, jwks_cache)
    assert claims.aud == ["policy-aud"]
    assert claims.email == "posture@example.com"
    assert claims.kid == "test-kid"
    assert str(providers.requests[0].url) == "https://example.cloudflareaccess.com/cdn-cgi/access/certs"


@pytest.mark.asyncio
async def test_jwks_is_cached_between_verifications(settings, providers, http_client, jwks_cache):
    await verify_access_assertion(make_assertion(), settings, http_client, jwks_cache)
    await verify_access_assertion(make_assertion(), settings, http_client, jwks_cache)
    assert len(providers.calls_to(settings.jwks_url)) == 1


@pytest.mark.parametrize(
    "assertion",
    [
        make_assertion(aud="another-application"),
        make_assertion(expires_in=-3600),
        make_assertion(secret="not-the-signing-secret"),
        make_assertion(kid="rotated-away"),
        "definitely.not.a-jwt",
    ],
)
@pytest.mark.asyncio
async def test_invalid_assertions_are_rejected(settings, providers, http_client, jwks_cache, assertion):
    with pytest.raises(AuthVerificationError) as excinfo:
        await verify_access_assertion(assertion, settings, http_client, jwks_cache)
    assert excinfo.value.status_code == 403
    assert excinfo.value.message.startswith("JWT verification failed")


@pytest.mark.asyncio
async def test_unreachable_jwks_is_a_verification_failure(settings, providers, http_client, jwks_cache):
    providers.jwks_response = lambda request: httpx.Response(502, text="bad gateway")
    with pytest.raises(AuthVerificationError):
        await verify_access_assertion(make_assertion(), settings, http_client, jwks_cache)


@pytest.mark.asyncio
async def test_rotated_signing_key_triggers_jwks_reload(settings, providers, http_client, jwks_cache):
    await verify_access_assertion(make_assertion(), settings, http_client, jwks_cache)

    rotated = {"keys": [*JWKS["keys"], {**JWKS["keys"][0], "kid": "new-kid"}]}
    providers.jwks_response = lambda request: httpx.Response(200, json=rotated)
    claims = await verify_access_assertion(make_assertion(kid="new-kid"), settings, http_client, jwks_cache)

    assert claims.kid == "new-kid"
    assert len(providers.calls_to(settings.jwks_url)) == 2


@pytest.mark.asyncio
async def test_unknown_kid_reloads_once_then_fails(settings, providers, http_client, jwks_cache):
    await verify_access_assertion(make_assertion(), settings, http_client, jwks_cache)
    with pytest.raises(AuthVerificationError):
        await verify_access_assertion(make_assertion(kid="never-published"), settings, http_client, jwks_cache)
    assert len(providers.calls_to(settings.jwks_url)) == 2
