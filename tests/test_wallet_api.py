# tests/test_wallet_api.py
from auth.models.user import User
from conftest import register_and_login, admin_headers


def test_balance_starts_at_zero(client):
    """测试新用户余额为 0"""
    headers = register_and_login(client, "13700000001")
    response = client.get("/api/v1/wallet/balance", headers=headers)
    assert response.status_code == 200
    assert response.json()["balance"] == "0.00"


def test_recharge_and_transactions(client):
    """测试充值与流水查询"""
    headers = register_and_login(client, "13700000002")
    response = client.post("/api/v1/wallet/recharge", json={"amount": "50.00", "payment_method": "WECHAT_PAY"}, headers=headers)
    assert response.status_code == 200
    assert response.json()["balance"] == "50.00"
    client.post("/api/v1/wallet/recharge", json={"amount": "25.50", "payment_method": "ALIPAY"}, headers=headers)

    data = client.get("/api/v1/wallet/transactions", headers=headers).json()
    assert data["total"] == 2
    assert {t["amount"] for t in data["transactions"]} == {"50.00", "25.50"}
    assert all(t["transaction_type"] == "TOPUP" for t in data["transactions"])

    data = client.get("/api/v1/wallet/transactions", params={"transaction_type": "CHARGE"}, headers=headers).json()
    assert data["total"] == 0


def test_recharge_validation(client):
    """测试充值金额和方式校验"""
    headers = register_and_login(client, "13700000003")
    assert client.post("/api/v1/wallet/recharge", json={"amount": "0", "payment_method": "ALIPAY"}, headers=headers).status_code == 422
    assert client.post("/api/v1/wallet/recharge", json={"amount": "1.001", "payment_method": "ALIPAY"}, headers=headers).status_code == 422
    response = client.post("/api/v1/wallet/recharge", json={"amount": "10.00", "payment_method": "BALANCE"}, headers=headers)
    assert response.status_code == 400


def test_admin_reads_user_transactions(client, db_session):
    """测试管理员查询用户流水"""
    admin = admin_headers(client, db_session)
    headers = register_and_login(client, "13700000004")
    client.post("/api/v1/wallet/recharge", json={"amount": "20.00", "payment_method": "BANK_CARD"}, headers=headers)
    user_id = db_session.query(User).filter(User.phone_number == "13700000004").first().id

    data = client.get("/api/v1/admin/wallet/transactions", params={"user_id": user_id}, headers=admin).json()
    assert data["total"] == 1
    assert data["transactions"][0]["method"] == "BANK_CARD"

    assert client.get("/api/v1/admin/wallet/transactions", params={"user_id": user_id}, headers=headers).status_code == 403


def test_profile_shows_plates_and_balance(client):
    """测试个人中心返回车牌与余额"""
    headers = register_and_login(client, "13700000005")
    client.post("/api/v1/vehicles", json={"license_plate": "沪A88888"}, headers=headers)
    client.post("/api/v1/wallet/recharge", json={"amount": "12.30", "payment_method": "ALIPAY"}, headers=headers)

    response = client.get("/api/v1/users/me/profile", headers=headers)
    assert response.status_code == 200
    data = response.json()
    assert data["phone_number"] == "13700000005"
    assert data["balance"] == "12.30"
    assert data["license_plates"] == [{"license_plate": "沪A88888", "vehicle_type": "SMALL", "is_default": True}]
