"""
API tests for OTP login, profile completion and KYC records
"""
import pytest

MOBILE = "9988776655"


async def login(client, redis, mobile=MOBILE):
    await client.post("/api/v1/auth/otp/send", json={"mobile_number": mobile})
    otp = redis.store[f"login_otp:{mobile}"]
    response = await client.post("/api/v1/auth/otp/verify", json={"mobile_number": mobile, "otp": otp})
    assert response.status_code == 200
    return response.json()


class TestOTPLogin:
    """Tests for the mobile OTP flow"""

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_send_otp(self, client, redis):
        response = await client.post("/api/v1/auth/otp/send", json={"mobile_number": MOBILE})

        assert response.status_code == 200
        data = response.json()
        assert data["mobile_number"] == "******6655"
        assert data["expires_in"] == 600
        assert len(redis.store[f"login_otp:{MOBILE}"]) == 6
        assert redis.ttls[f"login_otp:{MOBILE}"] == 600

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_invalid_mobile_number(self, client):
        response = await client.post("/api/v1/auth/otp/send", json={"mobile_number": "12345"})

        assert response.status_code == 422

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_first_login_creates_borrower(self, client, redis):
        tokens = await login(client, redis)

        assert tokens["is_new_user"] is True
        assert tokens["profile_step"] == 1
        assert f"login_otp:{MOBILE}" not in redis.store

        me = await client.get("/api/v1/users/me", headers={"Authorization": f"Bearer {tokens['access_token']}"})
        assert me.status_code == 200
        assert me.json()["mobile_number"] == MOBILE
        assert me.json()["member_tier"] == "bronze"
        assert me.json()["phone_verified"] is True
        assert me.json()["kyc_status"] == "pending"

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_returning_borrower(self, client, redis, test_user):
        tokens = await login(client, redis, mobile="9876543210")

        assert tokens["is_new_user"] is False
        assert tokens["profile_step"] == 4

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_wrong_otp_locks_after_five_attempts(self, client, redis):
        await redis.setex(f"login_otp:{MOBILE}", 600, "123456")

        for _ in range(4):
            response = await client.post(
                "/api/v1/auth/otp/verify", json={"mobile_number": MOBILE, "otp": "654321"}
            )
            assert response.status_code == 400
            assert response.json()["detail"] == "Invalid OTP"

        response = await client.post("/api/v1/auth/otp/verify", json={"mobile_number": MOBILE, "otp": "654321"})
        assert response.status_code == 429
        assert f"login_otp:{MOBILE}" not in redis.store

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_expired_otp(self, client):
        response = await client.post("/api/v1/auth/otp/verify", json={"mobile_number": MOBILE, "otp": "123456"})

        assert response.status_code == 400
        assert response.json()["detail"] == "OTP expired or not found"

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_refresh_tokens(self, client, redis):
        tokens = await login(client, redis)

        response = await client.post("/api/v1/auth/refresh", json={"refresh_token": tokens["refresh_token"]})
        assert response.status_code == 200
        assert response.json()["access_token"]

        wrong_type = await client.post("/api/v1/auth/refresh", json={"refresh_token": tokens["access_token"]})
        assert wrong_type.status_code == 401

        reused = await client.post("/api/v1/auth/refresh", json={"refresh_token": tokens["refresh_token"]})
        assert reused.status_code == 401
        assert reused.json()["detail"] == "Invalid refresh token"

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_logout_revokes_token(self, client, auth_headers):
        response = await client.post("/api/v1/auth/logout", headers=auth_headers)
        assert response.status_code == 200

        me = await client.get("/api/v1/users/me", headers=auth_headers)
        assert me.status_code == 401
        assert me.json()["detail"] == "Token has been revoked"


class TestProfile:
    """Tests for the multi-step profile"""

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_sections_unlock_in_order(self, client, new_user_headers):
        response = await client.put(
            "/api/v1/users/me/profile",
            json={"employment": {"employment_type": "salaried", "declared_monthly_income": "60000"}},
            headers=new_user_headers,
        )

        assert response.status_code == 400
        assert response.json()["detail"] == "Complete personal details first"

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_complete_profile(self, client, new_user_headers):
        response = await client.put(
            "/api/v1/users/me/profile",
            json={
                "personal": {"full_name": "Asha Rao", "date_of_birth": "1992-04-18"},
                "employment": {
                    "employment_type": "salaried",
                    "company_name": "Acme Pvt Ltd",
                    "declared_monthly_income": "60000",
                },
                "address": {
                    "address_line": "12 MG Road",
                    "city": "Bengaluru",
                    "state": "Karnataka",
                    "pincode": "560001",
                },
            },
            headers=new_user_headers,
        )

        assert response.status_code == 200
        data = response.json()
        assert data["profile_step"] == 4
        assert data["kyc_status"] == "in_progress"
        assert data["full_name"] == "Asha Rao"

        status = await client.get("/api/v1/users/me/kyc-status", headers=new_user_headers)
        assert status.json()["profile_completed"] is True
        assert status.json()["missing"] == ["pan_verification", "bank_account_verification"]

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_underage_borrower(self, client, new_user_headers):
        response = await client.put(
            "/api/v1/users/me/profile",
            json={"personal": {"full_name": "Young Person", "date_of_birth": "2015-01-01"}},
            headers=new_user_headers,
        )

        assert response.status_code == 422

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_email_verification(self, client, redis, new_user, new_user_headers):
        response = await client.post(
            "/api/v1/users/me/email", json={"email": "asha.rao@pocketcredit.in"}, headers=new_user_headers
        )
        assert response.status_code == 200

        otp = redis.store[f"email_otp:{new_user.id}"]
        response = await client.post("/api/v1/users/me/email/verify", json={"otp": otp}, headers=new_user_headers)
        assert response.status_code == 200

        me = await client.get("/api/v1/users/me", headers=new_user_headers)
        assert me.json()["email"] == "asha.rao@pocketcredit.in"
        assert me.json()["email_verified"] is True


class TestBankAccountAndDocuments:
    """Tests for the disbursal account and KYC documents"""

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_new_bank_account_starts_unverified(self, client, auth_headers):
        response = await client.put(
            "/api/v1/users/me/bank-account",
            json={
                "account_number": "123456789012",
                "ifsc_code": "hdfc0001234",
                "account_holder_name": "Test Borrower",
            },
            headers=auth_headers,
        )

        assert response.status_code == 200
        data = response.json()
        assert data["account_number"] == "XXXXXXXX9012"
        assert data["ifsc_code"] == "HDFC0001234"
        assert data["verified"] is False

        me = await client.get("/api/v1/users/me", headers=auth_headers)
        assert me.json()["bank_account_verified"] is False
        assert me.json()["kyc_status"] == "in_progress"

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_no_bank_account(self, client, new_user_headers):
        response = await client.get("/api/v1/users/me/bank-account", headers=new_user_headers)

        assert response.status_code == 404
        assert response.json() == {"detail": "No bank account registered", "reasons": []}

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_add_document(self, client, new_user_headers):
        response = await client.post(
            "/api/v1/users/me/documents",
            json={"document_type": "pan_card", "name": "PAN Card", "file_reference": "kyc/pan-front.jpg"},
            headers=new_user_headers,
        )

        assert response.status_code == 201
        assert response.json()["status"] == "pending"

        documents = await client.get("/api/v1/users/me/documents", headers=new_user_headers)
        assert [d["name"] for d in documents.json()] == ["PAN Card"]
