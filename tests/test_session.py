import json
from datetime import datetime, timedelta, timezone

import jwt

from core.auth import SessionContext
from models.user import AuthResult, Role, UserIdentity


def make_jwt(exp: datetime) -> str:
    return jwt.encode({"sub": "client-1", "exp": exp}, "signing-key-the-client-never-checks-0001", algorithm="HS256")


def test_login_saves_and_load_restores(tmp_path):
    path = tmp_path / "session.json"
    session = SessionContext(storage_path=str(path))
    session.login(AuthResult(token="Bearer tok-9", user=UserIdentity(id="client-1", role=Role.CLIENT)))

    assert session.token == "tok-9"
    assert json.loads(path.read_text()) == {"token": "tok-9", "userId": "client-1", "role": "CLIENT"}

    restored = SessionContext.load(path)
    assert restored.is_client
    assert restored.auth_headers() == {"Authorization": "Bearer tok-9"}


def test_missing_or_corrupt_file_gives_anonymous_session(tmp_path):
    assert not SessionContext.load(tmp_path / "absent.json").is_authenticated

    corrupt = tmp_path / "corrupt.json"
    corrupt.write_text("{not json")
    assert not SessionContext.load(corrupt).is_authenticated

    bad_role = tmp_path / "bad_role.json"
    bad_role.write_text(json.dumps({"token": "t", "userId": "u", "role": "ADMIN"}))
    assert not SessionContext.load(bad_role).is_authenticated


def test_expired_jwt_is_not_authenticated(tmp_path):
    past = datetime.now(timezone.utc) - timedelta(minutes=5)
    session = SessionContext(token=make_jwt(past), user_id="client-1", role=Role.CLIENT)
    assert session.is_expired()
    assert not session.is_authenticated

    path = tmp_path / "session.json"
    session.save(path)
    restored = SessionContext.load(path)
    assert restored.token is None
    assert not path.exists()


def test_unexpired_jwt_exposes_expiry():
    future = datetime.now(timezone.utc) + timedelta(hours=1)
    session = SessionContext(token=make_jwt(future), user_id="client-1", role=Role.CLIENT)
    assert session.is_authenticated
    assert abs((session.expires_at() - future).total_seconds()) < 1
    assert session.is_expired(now=future + timedelta(seconds=1))


def test_opaque_token_has_no_claims():
    session = SessionContext(token="opaque", user_id="u", role=Role.MECHANIC)
    assert session.claims() == {}
    assert session.expires_at() is None
    assert session.is_mechanic and not session.is_client


def test_teardown_clears_identity_before_callbacks():
    session = SessionContext(token="tok", user_id="client-1", role=Role.CLIENT)
    seen = []
    session.on_teardown(lambda reason: seen.append((reason, session.is_authenticated)))
    remove = session.on_teardown(lambda reason: seen.append("removed"))
    remove()

    session.teardown("unauthorized")
    session.teardown("unauthorized")

    assert seen == [("unauthorized", False)]


def test_failing_teardown_callback_does_not_block_others():
    session = SessionContext(token="tok", user_id="client-1", role=Role.CLIENT)
    seen = []

    def broken(reason):
        raise RuntimeError("boom")

    session.on_teardown(broken)
    session.on_teardown(seen.append)
    session.teardown("logout")
    assert seen == ["logout"]
