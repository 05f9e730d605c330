import httpx
import pytest

from app.auth.constants import SocialProvider
from app.auth.social import fetch_profile, parse_profile
from app.exceptions import InvalidSocialProfile


def test_parse_profile_field_spellings() -> None:
    google = parse_profile({"sub": "g1", "email": "A@X.com", "given_name": "Ann", "family_name": "Lee"})
    assert (google.subject_id, google.email, google.first_name, google.last_name) == (
        "g1", "a@x.com", "Ann", "Lee"
    )

    github = parse_profile({"id": 42, "email": None, "name": "Grace Brewster Hopper"})
    assert github.subject_id == "42"
    assert github.email is None
    assert (github.first_name, github.last_name) == ("Grace", "Brewster Hopper")

    client_supplied = parse_profile({"id": "f1", "firstName": "Fay", "lastName": "Wray"})
    assert (client_supplied.first_name, client_supplied.last_name) == ("Fay", "Wray")


def test_parse_profile_requires_subject() -> None:
    with pytest.raises(InvalidSocialProfile):
        parse_profile({"email": "a@x.com"})


@pytest.mark.asyncio
async def test_fetch_google_profile() -> None:
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"sub": "g-7", "email": "g@x.com", "name": "Gee Whiz"})

    profile = await fetch_profile(
        SocialProvider.GOOGLE, "ext-token", transport=httpx.MockTransport(handler)
    )
    assert profile.subject_id == "g-7"
    assert seen[0].headers["Authorization"] == "Bearer ext-token"
    assert seen[0].url.host == "www.googleapis.com"


@pytest.mark.asyncio
async def test_fetch_github_private_email() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/user/emails":
            return httpx.Response(
                200,
                json=[
                    {"email": "old@x.com", "primary": False, "verified": True},
                    {"email": "main@x.com", "primary": True, "verified": True},
                ],
            )
        return httpx.Response(200, json={"id": 99, "email": None, "name": "Octo Cat"})

    profile = await fetch_profile(
        SocialProvider.GITHUB, "gh-token", transport=httpx.MockTransport(handler)
    )
    assert profile.email == "main@x.com"
    assert profile.subject_id == "99"


@pytest.mark.asyncio
async def test_fetch_profile_rejected_token() -> None:
    transport = httpx.MockTransport(lambda request: httpx.Response(401, json={"error": "bad"}))
    with pytest.raises(InvalidSocialProfile):
        await fetch_profile(SocialProvider.FACEBOOK, "bad", transport=transport)


@pytest.mark.asyncio
async def test_fetch_profile_network_failure() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("boom", request=request)

    with pytest.raises(InvalidSocialProfile):
        await fetch_profile(SocialProvider.GOOGLE, "t", transport=httpx.MockTransport(handler))
