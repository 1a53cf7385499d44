from sqlalchemy.orm import Session

from app.core.security import create_email_verification_token


# ============================================================================
# LOGIN TESTS
# ============================================================================


def test_login_success(client, db: Session, admin_user: dict):
    """Test successful login returns access token and user info."""
    response = client.post(
        "/api/v1/auth/login",
        data={
            "username": admin_user["email"],
            "password": admin_user["password"],
        },
    )
    assert response.status_code == 200
    data = response.json()
    assert "access_token" in data
    assert data["token_type"] == "bearer"
    assert data["user"]["email"] == admin_user["email"]
    assert data["user"]["role"]["name"] == "admin"


def test_login_invalid_email(client, db: Session):
    """Test login with non-existent email."""
    response = client.post(
        "/api/v1/auth/login",
        data={
            "username": "nonexistent@example.com",
            "password": "Password123!",
        },
    )
    assert response.status_code == 401
    assert response.json()["code"] == "UNAUTHORIZED"
    assert "Incorrect email or password" in response.json()["detail"]


def test_login_wrong_password(client, db: Session, admin_user: dict):
    """Test login with wrong password."""
    response = client.post(
        "/api/v1/auth/login",
        data={
            "username": admin_user["email"],
            "password": "WrongPassword123!",
        },
    )
    assert response.status_code == 401
    assert "Incorrect email or password" in response.json()["detail"]


def test_login_token_opens_protected_routes(client, db: Session, staff_user: dict):
    login = client.post(
        "/api/v1/auth/login",
        data={"username": staff_user["email"], "password": staff_user["password"]},
    )
    token = login.json()["access_token"]

    response = client.get("/api/v1/auth/me", headers={"Authorization": f"Bearer {token}"})

    assert response.status_code == 200
    assert response.json()["role"]["name"] == "staff"


# ============================================================================
# GET CURRENT USER TESTS
# ============================================================================


def test_get_current_user_success(client, db: Session, admin_token: str, admin_user: dict):
    """Test getting current user info with valid token."""
    response = client.get(
        "/api/v1/auth/me",
        headers={"Authorization": f"Bearer {admin_token}"},
    )
    assert response.status_code == 200
    data = response.json()
    assert data["email"] == admin_user["email"]
    assert data["id"] == admin_user["id"]


def test_get_current_user_without_token(client, db: Session):
    """Test getting current user without token fails."""
    response = client.get("/api/v1/auth/me")
    assert response.status_code == 401  # Missing authentication credentials


def test_get_current_user_invalid_token(client, db: Session):
    """Test getting current user with invalid token fails."""
    response = client.get(
        "/api/v1/auth/me",
        headers={"Authorization": "Bearer invalid_token"},
    )
    assert response.status_code == 401
    assert "Could not validate credentials" in response.json()["detail"]


def test_email_verification_token_is_not_a_login(client, db: Session):
    """Verification links share the signing key but never authenticate."""
    token = create_email_verification_token("some-session-id")
    response = client.get(
        "/api/v1/auth/me",
        headers={"Authorization": f"Bearer {token}"},
    )
    assert response.status_code == 401
