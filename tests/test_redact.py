from __future__ import annotations

from pylingoloop._redact import redact_for_log
from pylingoloop.models.mutation import PendingMutation
from pylingoloop.session import Credential


def test_redact_for_log_redacts_sensitive_keys() -> None:
    payload = {
        "id": "m1",
        "request": {
            "path": "/api/account/password",
            "body": {"password": "pw", "newPassword": "pw2", "accessToken": "tok"},
        },
        "Authorization": "Bearer abc",
    }

    redacted = redact_for_log(payload)
    body = redacted["request"]["body"]
    assert body["password"] == "<redacted>"
    assert body["newPassword"] == "<redacted>"
    assert body["accessToken"] == "<redacted>"
    assert redacted["Authorization"] == "<redacted>"
    assert redacted["request"]["path"] == "/api/account/password"


def test_redact_for_log_dumps_models() -> None:
    mutation = PendingMutation.create("/api/login", body={"token": "secret"}, mutation_id="m1")

    redacted = redact_for_log(mutation)

    assert redacted["id"] == "m1"
    assert redacted["request"]["body"]["token"] == "<redacted>"


def test_redact_for_log_truncates_long_strings() -> None:
    long_value = "x" * 600
    redacted = redact_for_log({"value": long_value}, max_string=10)
    assert redacted["value"].startswith("x" * 10)
    assert "<truncated>" in redacted["value"]


def test_credential_repr_hides_token() -> None:
    credential = Credential(access_token="super-secret", user_id="user-1")

    assert "super-secret" not in repr(credential)
    assert "super-secret" not in str(credential)
    assert credential.authorization_header() == "Bearer super-secret"


def test_redact_for_log_masks_bearer_values_under_any_key() -> None:
    redacted = redact_for_log({"headers": {"X-Forwarded-Auth": "Bearer abc.def"}, "note": "bearer"})

    assert redacted["headers"]["X-Forwarded-Auth"] == "Bearer <redacted>"
    assert redacted["note"] == "bearer"
