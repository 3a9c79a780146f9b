from app.services import identity, totp
from tests.factories import PASSWORD


def _login(client, principal, password=PASSWORD):
    return client.post(
        "/auth/login", json={"email": principal.email, "password": password}
    )


def _enable_app(mfa_service, db_session, principal):
    result = mfa_service.start_setup(db_session, principal.id, "app")
    mfa_service.confirm_setup(
        db_session, principal.id, totp.current_code(result["secret"])
    )
    return result["secret"]


class TestLogin:
    def test_login_without_mfa(self, client, student):
        resp = _login(client, student)
        assert resp.status_code == 200
        body = resp.json()
        assert body["mfa_required"] is False
        assert body["principal"]["email"] == student.email
        claims = identity.decode_token(body["access_token"], identity.ACCESS_TOKEN_TYPE)
        assert claims["sub"] == str(student.id)
        assert claims["mfa"] is False

    def test_email_is_case_insensitive(self, client, student):
        resp = client.post(
            "/auth/login", json={"email": student.email.upper(), "password": PASSWORD}
        )
        assert resp.status_code == 200

    def test_wrong_password(self, client, student):
        resp = _login(client, student, password="wrong")
        assert resp.status_code == 401
        assert resp.json()["code"] == "invalid_credentials"

    def test_unknown_email(self, client):
        resp = client.post(
            "/auth/login", json={"email": "ghost@esprim.tn", "password": PASSWORD}
        )
        assert resp.status_code == 401

    def test_inactive_principal(self, client, db_session, student):
        student.is_active = False
        db_session.commit()
        assert _login(client, student).status_code == 401


class TestMfaLogin:
    def test_app_challenge(self, client, db_session, mfa_service, teacher):
        secret = _enable_app(mfa_service, db_session, teacher)
        resp = _login(client, teacher)
        body = resp.json()
        assert body["mfa_required"] is True
        assert body["access_token"] is None
        assert body["method"] == "app"

        resp = client.post(
            "/auth/login/mfa",
            json={"mfa_token": body["mfa_token"], "code": totp.current_code(secret)},
        )
        assert resp.status_code == 200
        token = resp.json()["access_token"]
        claims = identity.decode_token(token, identity.ACCESS_TOKEN_TYPE)
        assert claims["mfa"] is True

    def test_wrong_code(self, client, db_session, mfa_service, teacher):
        secret = _enable_app(mfa_service, db_session, teacher)
        mfa_token = _login(client, teacher).json()["mfa_token"]
        code = next(
            c for c in ("000000", "111111", "222222") if not totp.verify(secret, c)
        )
        resp = client.post("/auth/login/mfa", json={"mfa_token": mfa_token, "code": code})
        assert resp.status_code == 401
        assert resp.json()["code"] == "invalid_code"

    def test_challenge_token_is_not_an_access_token(
        self, client, db_session, mfa_service, teacher
    ):
        _enable_app(mfa_service, db_session, teacher)
        mfa_token = _login(client, teacher).json()["mfa_token"]
        resp = client.get("/auth/mfa", headers={"Authorization": f"Bearer {mfa_token}"})
        assert resp.status_code == 401

    def test_access_token_is_not_a_challenge(self, client, auth_headers):
        token = auth_headers["Authorization"].split(" ", 1)[1]
        resp = client.post(
            "/auth/login/mfa", json={"mfa_token": token, "code": "123456"}
        )
        assert resp.status_code == 401
        assert resp.json()["code"] == "invalid_credentials"

    def test_sms_challenge(self, client, db_session, mfa_service, fake_dispatcher, student):
        mfa_service.start_setup(db_session, student.id, "sms")
        mfa_service.confirm_setup(db_session, student.id, fake_dispatcher.last_code)

        body = _login(client, student).json()
        assert body["method"] == "sms"
        assert fake_dispatcher.sent[-1]["purpose"] == "login"

        resend = client.post("/auth/login/mfa/sms", json={"mfa_token": body["mfa_token"]})
        assert resend.status_code == 202
        code = fake_dispatcher.last_code

        resp = client.post(
            "/auth/login/mfa", json={"mfa_token": body["mfa_token"], "code": code}
        )
        assert resp.status_code == 200
        assert resp.json()["access_token"]
