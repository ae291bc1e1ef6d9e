import jwt
import pytest

from errors import AuthError
from identity import USERS_COLLECTION, IdentityProvider, bootstrap_identity


SECRET = "test-secret"


@pytest.fixture
def provider(store, tmp_path):
    return IdentityProvider(store, SECRET, str(tmp_path / "session"))


def test_token_round_trip(provider):
    identity = provider.sign_in_with_token(provider.issue_token("alice"))
    assert identity.uid == "alice"
    assert identity.anonymous is False
    assert identity.provider == "token"


def test_expired_token_rejected(provider):
    with pytest.raises(AuthError):
        provider.sign_in_with_token(provider.issue_token("alice", hours=-1))


def test_token_for_other_environment_rejected(provider):
    token = jwt.encode({"uid": "alice", "aud": "other-app"}, SECRET, algorithm="HS256")
    with pytest.raises(AuthError):
        provider.sign_in_with_token(token)


def test_token_sign_in_needs_secret(store):
    with pytest.raises(AuthError):
        IdentityProvider(store).sign_in_with_token("whatever")
    with pytest.raises(AuthError):
        IdentityProvider(store).issue_token("alice")


def test_anonymous_sign_in_is_persisted(provider, store, tmp_path):
    first = provider.sign_in_anonymously()
    assert first.anonymous is True
    assert store.db[USERS_COLLECTION].count_documents({"uid": first.uid}) == 1

    again = IdentityProvider(store, SECRET, str(tmp_path / "session")).sign_in_anonymously()
    assert again.uid == first.uid
    assert store.db[USERS_COLLECTION].count_documents({}) == 1



def test_unreadable_session_file_signs_in_fresh(store, tmp_path):
    session = tmp_path / "session"
    session.mkdir()
    identity = IdentityProvider(store, SECRET, str(session)).sign_in_anonymously()
    assert identity.anonymous is True
    assert store.db[USERS_COLLECTION].count_documents({"uid": identity.uid}) == 1

def test_anonymous_without_session_file(store):
    provider = IdentityProvider(store)
    assert provider.sign_in_anonymously().uid != provider.sign_in_anonymously().uid


def test_bootstrap_prefers_token(provider):
    identity = bootstrap_identity(provider, provider.issue_token("alice"))
    assert identity.uid == "alice"


def test_bootstrap_falls_back_to_anonymous(provider):
    identity = bootstrap_identity(provider, "not-a-jwt")
    assert identity is not None
    assert identity.provider == "anonymous"


def test_bootstrap_without_token_is_anonymous(provider):
    assert bootstrap_identity(provider).anonymous is True


def test_bootstrap_returns_none_when_everything_fails(provider, monkeypatch):
    def refuse():
        raise AuthError("offline")

    monkeypatch.setattr(provider, "sign_in_anonymously", refuse)
    assert bootstrap_identity(provider, "not-a-jwt") is None
