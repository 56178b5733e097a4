# tests/test_auth_api.py
from conftest import register_and_login

# 注意：测试客户端发送的数据是 json，而不是 pydantic 模型

def test_register_user_success(client):
    """测试用户成功注册"""
    response = client.post(
        "/api/v1/register",
        json={
            "phone_number": "13800138000",
            "email": "test@example.com",
            "username": "testuser",
            "password": "a_very_strong_password"
        }
    )
    assert response.status_code == 201
    data = response.json()
    assert data["email"] == "test@example.com"
    assert data["phone_number"] == "13800138000"
    assert data["role"] == "user"
    assert "password_hash" not in data # 确保密码哈希没有被返回
    assert "id" in data


def test_register_user_phone_already_exists(client):
    """测试手机号已存在时注册失败"""
    client.post("/api/v1/register", json={"phone_number": "13800138001", "password": "password123"})
    response = client.post("/api/v1/register", json={"phone_number": "13800138001", "password": "anotherpassword"})
    assert response.status_code == 400
    assert response.json()["detail"] == "该手机号已被注册"


def test_register_user_short_password(client):
    """测试密码过短"""
    response = client.post("/api/v1/register", json={"phone_number": "13800138002", "password": "short"})
    assert response.status_code == 422


def test_login_with_phone_or_username(client):
    """测试手机号和用户名都可以登录"""
    client.post(
        "/api/v1/register",
        json={"phone_number": "13900139000", "password": "mysecretpassword", "username": "loginuser"}
    )
    # OAuth2PasswordRequestForm 需要 form data
    for name in ("13900139000", "loginuser"):
        response = client.post("/api/v1/login", data={"username": name, "password": "mysecretpassword"})
        assert response.status_code == 200
        data = response.json()
        assert data["token_type"] == "bearer"
        assert data["access_token"]


def test_login_wrong_password(client):
    """测试密码错误"""
    client.post("/api/v1/register", json={"phone_number": "13900139001", "password": "mysecretpassword"})
    response = client.post("/api/v1/login", data={"username": "13900139001", "password": "wrongpassword"})
    assert response.status_code == 401
    assert response.json()["detail"] == "用户名或密码不正确"


def test_read_and_update_me(client):
    """测试获取和修改个人信息"""
    headers = register_and_login(client, "13900139002")
    response = client.get("/api/v1/users/me", headers=headers)
    assert response.status_code == 200
    assert response.json()["phone_number"] == "13900139002"

    response = client.patch("/api/v1/users/me", json={"nickname": "小王"}, headers=headers)
    assert response.status_code == 200
    assert response.json()["nickname"] == "小王"


def test_me_requires_token(client):
    """测试未登录访问"""
    assert client.get("/api/v1/users/me").status_code == 401
    response = client.get("/api/v1/users/me", headers={"Authorization": "Bearer not-a-token"})
    assert response.status_code == 401


def test_change_password(client):
    """测试修改密码"""
    headers = register_and_login(client, "13900139003")
    response = client.post(
        "/api/v1/users/me/change-password",
        json={"current_password": "wrong-password", "new_password": "newpassword1"},
        headers=headers,
    )
    assert response.status_code == 400

    response = client.post(
        "/api/v1/users/me/change-password",
        json={"current_password": "password123", "new_password": "newpassword1"},
        headers=headers,
    )
    assert response.status_code == 200
    assert client.post("/api/v1/login", data={"username": "13900139003", "password": "password123"}).status_code == 401
    assert client.post("/api/v1/login", data={"username": "13900139003", "password": "newpassword1"}).status_code == 200
