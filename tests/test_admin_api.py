# tests/test_admin_api.py
from auth.models.user import User
from conftest import register_and_login, admin_headers


def test_admin_lists_users(client, db_session):
    """测试管理员获取用户列表"""
    headers = admin_headers(client, db_session)
    register_and_login(client, "13900139000")

    response = client.get("/api/v1/admin/users", headers=headers)
    assert response.status_code == 200
    data = response.json()
    assert data["total"] == 2
    assert data["skip"] == 0
    assert len(data["items"]) == 2

    response = client.get("/api/v1/admin/users", params={"search": "13900139000"}, headers=headers)
    assert response.json()["total"] == 1

    response = client.get("/api/v1/admin/users", params={"role": "admin"}, headers=headers)
    assert [u["phone_number"] for u in response.json()["items"]] == ["19900000009"]


def test_normal_user_gets_403(client):
    """测试普通用户访问管理接口"""
    headers = register_and_login(client, "13900139000")
    assert client.get("/api/v1/admin/users", headers=headers).status_code == 403
    assert client.get("/api/v1/admin/consistency", headers=headers).status_code == 403


def test_admin_user_detail_not_found(client, db_session):
    """测试获取不存在的用户"""
    headers = admin_headers(client, db_session)
    response = client.get("/api/v1/admin/users/9999", headers=headers)
    assert response.status_code == 404
    assert response.json()["detail"] == "用户不存在"


def test_admin_suspends_user(client, db_session):
    """测试禁用用户后无法访问"""
    headers = admin_headers(client, db_session)
    user_headers = register_and_login(client, "13900139000")
    user_id = db_session.query(User).filter(User.phone_number == "13900139000").first().id

    response = client.put(f"/api/v1/admin/users/{user_id}/status", params={"status": "suspended"}, headers=headers)
    assert response.status_code == 200
    assert client.get("/api/v1/users/me", headers=user_headers).status_code == 403


def test_admin_cannot_suspend_self(client, db_session):
    """测试管理员不能禁用自己"""
    headers = admin_headers(client, db_session)
    me = client.get("/api/v1/users/me", headers=headers).json()
    response = client.put(f"/api/v1/admin/users/{me['id']}/status", params={"status": "suspended"}, headers=headers)
    assert response.status_code == 400


def test_admin_promotes_user(client, db_session):
    """测试修改用户角色"""
    headers = admin_headers(client, db_session)
    user_headers = register_and_login(client, "13900139000")
    user_id = client.get("/api/v1/users/me", headers=user_headers).json()["id"]

    response = client.patch(f"/api/v1/admin/users/{user_id}", json={"role": "admin", "nickname": "新管理员"}, headers=headers)
    assert response.status_code == 200
    assert response.json()["role"] == "admin"
    assert client.get("/api/v1/admin/users", headers=user_headers).status_code == 200
