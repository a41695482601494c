"""Tests for federated (Google/Kakao) sign-in."""
from urllib.parse import parse_qs, urlparse

import pytest
from sqlalchemy.orm import Session

from login_platform.login_platform.login_service.auth import hash_password
from login_platform.login_platform.login_service.db import engine
from login_platform.login_platform.login_service.errors import Conflict, ProviderConflict, UpstreamFailure, ValidationFailure
from login_platform.login_platform.login_service.federation import ProviderIdentity, resolve
from login_platform.login_platform.login_service.models import Account, AuthEvent, Provider
from login_platform.login_platform.login_service.oauth import OAuthClient


class FakeProviderClient(OAuthClient):
    """Provider client that skips the network and returns a canned identity."""

    authorize_endpoint = "https://provider.test/authorize"
    token_endpoint = "https://provider.test/token"
    userinfo_endpoint = "https://provider.test/userinfo"
    scope = "email"

    def __init__(self, provider, identity=None, error=None):
        super().__init__("client-id", "client-secret", 1.0)
        self.provider = provider
        self.identity = identity
        self.error = error
        self.exchanged = []

    def exchange(self, *, code, redirect_uri):
        self.exchanged.append((code, redirect_uri))
        if self.error is not None:
            raise self.error
        return self.identity

    def parse_profile(self, profile):
        return self.identity


def google(provider_id="g-1", email="g@x.com"):
    return ProviderIdentity(provider=Provider.GOOGLE, provider_id=provider_id, email=email)


def kakao(provider_id="k-1", email="k@x.com"):
    return ProviderIdentity(provider=Provider.KAKAO, provider_id=provider_id, email=email)


def count_accounts(db_session, email):
    db_session.expire_all()
    return db_session.query(Account).filter(Account.email == email).count()


def test_first_sign_in_creates_verified_account(store, db_session):
    principal = resolve(store, google())

    assert principal.email == "g@x.com"
    assert principal.provider == "Google"
    account = db_session.query(Account).filter(Account.email == "g@x.com").one()
    assert account.provider_id == "g-1"
    assert account.verified is True
    assert account.password_hash is None


def test_second_sign_in_reuses_account(store, db_session):
    first = resolve(store, google())
    second = resolve(store, google())

    assert first == second
    assert count_accounts(db_session, "g@x.com") == 1


def test_same_email_under_another_provider_id_is_rejected(store, db_session):
    owner = resolve(store, google(provider_id="g-owner", email="v@x.com"))

    with pytest.raises(Conflict):
        resolve(store, google(provider_id="g-other", email="v@x.com"))

    db_session.expire_all()
    account = db_session.query(Account).filter(Account.id == owner.id).one()
    assert account.provider_id == "g-owner"
    assert count_accounts(db_session, "v@x.com") == 1


def test_empty_provider_id_is_backfilled(store, db_session):
    existing = store.create(email="g@x.com", provider=Provider.GOOGLE, verified=True)

    principal = resolve(store, google(provider_id="g-1"))

    assert principal.id == existing.id
    db_session.expire_all()
    assert db_session.query(Account).filter(Account.id == existing.id).one().provider_id == "g-1"


def test_provider_id_match_wins_over_changed_email(store):
    first = resolve(store, google(email="old@x.com"))
    second = resolve(store, google(email="new@x.com"))
    assert first.id == second.id


def test_email_owned_by_local_account_is_rejected(store, db_session):
    local = store.create(email="a@x.com", provider=Provider.EMAIL, password_hash=hash_password("secret1"))

    with pytest.raises(ProviderConflict) as exc:
        resolve(store, google(email="a@x.com"))

    assert exc.value.provider == "Email"
    db_session.expire_all()
    unchanged = db_session.query(Account).filter(Account.id == local.id).one()
    assert unchanged.provider == Provider.EMAIL
    assert unchanged.provider_id is None
    assert count_accounts(db_session, "a@x.com") == 1


def test_email_owned_by_other_provider_is_rejected(store, db_session):
    resolve(store, google(email="same@x.com"))

    with pytest.raises(ProviderConflict) as exc:
        resolve(store, kakao(email="same@x.com"))

    assert exc.value.provider == "Google"
    assert "Google" in exc.value.detail
    assert count_accounts(db_session, "same@x.com") == 1


def test_pending_signup_does_not_block_provider(store, db_session):
    store.create(email="g@x.com", provider=None, verification_token="abc123")

    principal = resolve(store, google())

    assert principal.provider == "Google"
    assert count_accounts(db_session, "g@x.com") == 2


def test_missing_email_is_rejected(store, db_session):
    with pytest.raises(ValidationFailure):
        resolve(store, kakao(email=""))
    assert db_session.query(Account).count() == 0


def test_concurrent_first_sign_in_resolves_to_winner(store, db_session, monkeypatch):
    original_create = store.create

    def create_after_competitor(**fields):
        # Another callback for the same identity commits first
        with Session(bind=engine) as other:
            other.add(Account(email="g@x.com", provider=Provider.GOOGLE, provider_id="g-1", verified=True))
            other.commit()
        return original_create(**fields)

    monkeypatch.setattr(store, "create", create_after_competitor)

    principal = resolve(store, google())

    assert principal.email == "g@x.com"
    assert count_accounts(db_session, "g@x.com") == 1


# ---------------- HTTP flow ----------------


def test_redirects_to_provider_with_state(client, oauth_clients):
    oauth_clients["google"] = FakeProviderClient(Provider.GOOGLE, google())

    resp = client.get("/auth/google", follow_redirects=False)

    assert resp.status_code == 302
    location = urlparse(resp.headers["location"])
    query = parse_qs(location.query)
    assert location.netloc == "provider.test"
    assert query["redirect_uri"] == ["http://localhost:8000/auth/google/callback"]
    assert query["state"] == [resp.cookies["oauth_state"]]


def test_unknown_provider_is_404(client, oauth_clients):
    for path in ("/auth/github", "/auth/github/callback?code=abc"):
        resp = client.get(path, follow_redirects=False)
        assert resp.status_code == 404
        assert resp.json()["code"] == "NOT_FOUND"
        assert "github" in resp.json()["detail"]


def start_sign_in(client):
    resp = client.get("/auth/google", follow_redirects=False)
    return resp.cookies["oauth_state"]


def test_callback_logs_in_and_sets_cookies(client, oauth_clients, settings, db_session):
    fake = FakeProviderClient(Provider.GOOGLE, google())
    oauth_clients["google"] = fake
    state = start_sign_in(client)

    resp = client.get(f"/auth/google/callback?code=abc&state={state}", follow_redirects=False)

    assert resp.status_code == 302
    assert resp.headers["location"] == settings.CLIENT_REDIRECT_URL
    assert "access_jwt" in resp.cookies
    assert "refresh_jwt" in resp.cookies
    assert fake.exchanged == [("abc", "http://localhost:8000/auth/google/callback")]

    info = client.get("/userInfo")
    assert info.json() == {"result": "Login success", "email": "g@x.com", "provider": "Google"}
    assert db_session.query(AuthEvent).filter(AuthEvent.event_type == "oauth_login").count() == 1


def test_callback_with_wrong_state_is_rejected(client, oauth_clients, db_session):
    fake = FakeProviderClient(Provider.GOOGLE, google())
    oauth_clients["google"] = fake
    start_sign_in(client)

    resp = client.get("/auth/google/callback?code=abc&state=forged", follow_redirects=False)

    assert resp.status_code == 302
    assert parse_qs(urlparse(resp.headers["location"]).query)["error"] == ["invalid_state"]
    assert fake.exchanged == []
    assert db_session.query(Account).count() == 0


def test_callback_denied_by_user(client, oauth_clients):
    oauth_clients["google"] = FakeProviderClient(Provider.GOOGLE, google())

    resp = client.get("/auth/google/callback?error=access_denied", follow_redirects=False)

    assert parse_qs(urlparse(resp.headers["location"]).query)["error"] == ["oauth_denied"]


def test_callback_upstream_failure(client, oauth_clients):
    oauth_clients["google"] = FakeProviderClient(Provider.GOOGLE, error=UpstreamFailure("Google is unavailable"))
    state = start_sign_in(client)

    resp = client.get(f"/auth/google/callback?code=abc&state={state}", follow_redirects=False)

    assert parse_qs(urlparse(resp.headers["location"]).query)["error"] == ["oauth_failed"]
    assert "access_jwt" not in resp.cookies


def test_callback_conflict_names_original_provider(client, oauth_clients, store, db_session):
    store.create(email="k@x.com", provider=Provider.EMAIL, password_hash=hash_password("secret1"))
    oauth_clients["kakao"] = FakeProviderClient(Provider.KAKAO, kakao())
    state = client.get("/auth/kakao", follow_redirects=False).cookies["oauth_state"]

    resp = client.get(f"/auth/kakao/callback?code=abc&state={state}", follow_redirects=False)

    query = parse_qs(urlparse(resp.headers["location"]).query)
    assert query["error"] == ["provider_conflict"]
    assert query["provider"] == ["Email"]
    assert "access_jwt" not in resp.cookies
    assert count_accounts(db_session, "k@x.com") == 1
    event = db_session.query(AuthEvent).filter(AuthEvent.event_type == "oauth_rejected").one()
    assert event.event_metadata == {"provider": "Kakao", "registered_provider": "Email"}


def test_session_mode_callback_sets_persistent_session(client, oauth_clients, use_settings):
    use_settings(CREDENTIAL_STRATEGY="session")
    oauth_clients["kakao"] = FakeProviderClient(Provider.KAKAO, kakao())
    state = client.get("/auth/kakao", follow_redirects=False).cookies["oauth_state"]

    resp = client.get(f"/auth/kakao/callback?code=abc&state={state}", follow_redirects=False)

    session_cookie = next(c for c in resp.headers.get_list("set-cookie") if c.startswith("session_id="))
    assert "Max-Age=" in session_cookie
    assert client.get("/userInfo").json()["provider"] == "Kakao"
