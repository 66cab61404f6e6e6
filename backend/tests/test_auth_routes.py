from fastapi import FastAPI
from fastapi.testclient import TestClient

from tripdesk.auth.routes import router
from tripdesk.core.security import create_access_token, create_refresh_token, hash_password
from tripdesk.db.prisma_client import get_db

from conftest import FakePrisma


def _client(db: FakePrisma) -> TestClient:
    app = FastAPI()
    app.include_router(router)

    async def _db():
        yield db

    app.dependency_overrides[get_db] = _db
    return TestClient(app)


def _seed(db: FakePrisma, status: str = "Active"):
    dept = db.department.add(name="Operations", code="OPS")
    return db.user.add(
        id="user-1",
        email="jane@example.com",
        first_name="Jane",
        last_name="Perera",
        role="EMPLOYEE",
        status=status,
        department_id=dept["id"],
        password_hash=hash_password("s3cret-pass"),
    )


def test_login_returns_tokens_and_sets_cookies():
    db = FakePrisma()
    _seed(db)
    client = _client(db)

    response = client.post("/auth/login", data={"username": "Jane@Example.com", "password": "s3cret-pass"})

    assert response.status_code == 200
    body = response.json()
    assert body["tokenType"] == "bearer"
    assert body["accessToken"] and body["refreshToken"]
    assert body["user"]["name"] == "Jane Perera"
    assert body["user"]["department"] == "Operations"
    assert "accessToken" in response.cookies
    assert db.user.get("user-1")["last_login_at"] is not None


def test_login_rejects_bad_password_and_disabled_accounts():
    db = FakePrisma()
    _seed(db)
    client = _client(db)

    wrong = client.post("/auth/login", data={"username": "jane@example.com", "password": "nope"})
    assert wrong.status_code == 401

    db.user.get("user-1")["status"] = "Inactive"
    disabled = client.post("/auth/login", data={"username": "jane@example.com", "password": "s3cret-pass"})
    assert disabled.status_code == 403
    assert disabled.json()["detail"] == "Account is disabled"


def test_me_accepts_bearer_token_and_cookie():
    db = FakePrisma()
    _seed(db)
    client = _client(db)
    token = create_access_token({"sub": "user-1", "role": "EMPLOYEE"})

    by_header = client.get("/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert by_header.status_code == 200
    assert by_header.json()["email"] == "jane@example.com"

    client.cookies.set("accessToken", token)
    assert client.get("/auth/me").status_code == 200


def test_me_requires_valid_access_token():
    db = FakePrisma()
    _seed(db)
    client = _client(db)

    assert client.get("/auth/me").status_code == 401

    refresh = create_refresh_token("user-1")
    response = client.get("/auth/me", headers={"Authorization": f"Bearer {refresh}"})
    assert response.status_code == 401


def test_me_blocks_disabled_user():
    db = FakePrisma()
    _seed(db, status="Suspended")
    client = _client(db)
    token = create_access_token({"sub": "user-1", "role": "EMPLOYEE"})

    response = client.get("/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert response.status_code == 403


def test_refresh_issues_new_access_token():
    db = FakePrisma()
    _seed(db)
    client = _client(db)

    response = client.post("/auth/refresh", json={"refreshToken": create_refresh_token("user-1")})
    assert response.status_code == 200
    assert response.json()["accessToken"]

    access = create_access_token({"sub": "user-1"})
    rejected = client.post("/auth/refresh", json={"refreshToken": access})
    assert rejected.status_code == 401

    missing = client.post("/auth/refresh", json={})
    assert missing.status_code == 401


def test_logout_clears_cookies():
    client = _client(FakePrisma())
    response = client.post("/auth/logout")
    assert response.status_code == 200
    assert response.json() == {"message": "Logged out"}
