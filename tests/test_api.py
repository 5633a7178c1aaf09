from decimal import Decimal

import pytest

from lingoclass.config import settings
from lingoclass.models import RoleName, TransactionType
from lingoclass.services import ledger

CLASS_DAY = "2030-03-04"


@pytest.mark.asyncio
async def test_health(client):
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


@pytest.mark.asyncio
async def test_me_unauthenticated(client):
    response = await client.get("/auth/me")
    assert response.status_code == 401
    assert response.json() == {"error": "Not authenticated"}


@pytest.mark.asyncio
async def test_garbage_token_rejected(client):
    response = await client.get("/auth/me", headers={"Authorization": "Bearer not-a-jwt"})
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_login_and_me(client, make_user):
    user = make_user(RoleName.STUDENT, password="Sup3rSecret")

    response = await client.post("/auth/login", json={"email": user.email.upper(), "password": "Sup3rSecret"})
    assert response.status_code == 200
    body = response.json()
    assert body["token_type"] == "bearer"
    assert settings.AUTH_COOKIE_NAME in response.cookies

    me = await client.get("/auth/me", headers={"Authorization": f"Bearer {body['access_token']}"})
    assert me.status_code == 200
    assert me.json()["email"] == user.email
    assert me.json()["roles"] == ["STUDENT"]


@pytest.mark.asyncio
async def test_login_wrong_password(client, make_user):
    user = make_user()
    response = await client.post("/auth/login", json={"email": user.email, "password": "nope"})
    assert response.status_code == 401
    assert response.json() == {"error": "Invalid credentials"}


@pytest.mark.asyncio
async def test_register_is_admin_only(client, student, admin, auth_headers):
    payload = {"email": "new@example.com", "first_name": "New", "last_name": "Teacher",
               "password": "LongEnough1", "roles": ["TEACHER"]}

    denied = await client.post("/auth/register", json=payload, headers=auth_headers(student))
    assert denied.status_code == 403
    assert denied.json() == {"error": "Permission denied"}

    created = await client.post("/auth/register", json=payload, headers=auth_headers(admin))
    assert created.status_code == 201
    assert created.json()["roles"] == ["TEACHER"]

    duplicate = await client.post("/auth/register", json=payload, headers=auth_headers(admin))
    assert duplicate.status_code == 400


@pytest.mark.asyncio
async def test_booking_lifecycle(client, teacher, student, auth_headers):
    created = await client.post(
        "/bookings",
        json={"student_id": student.id, "day": CLASS_DAY, "time_slot": "10:00-11:00"},
        headers=auth_headers(teacher),
    )
    assert created.status_code == 201
    booking = created.json()
    assert booking["teacher_id"] == teacher.id
    assert booking["status"] == "CONFIRMED"

    clash = await client.post(
        "/bookings",
        json={"student_id": student.id, "day": CLASS_DAY, "time_slot": "10:30-11:30"},
        headers=auth_headers(teacher),
    )
    assert clash.status_code == 400

    mine = await client.get("/bookings", headers=auth_headers(student))
    assert [b["id"] for b in mine.json()["items"]] == [booking["id"]]

    cancelled = await client.post(f"/bookings/{booking['id']}/cancel", headers=auth_headers(student))
    assert cancelled.status_code == 200
    assert cancelled.json()["status"] == "CANCELLED"

    again = await client.post(f"/bookings/{booking['id']}/cancel", headers=auth_headers(student))
    assert again.status_code == 400
    assert "error" in again.json()


@pytest.mark.asyncio
async def test_non_participant_forbidden(client, teacher, student, make_user, auth_headers):
    created = await client.post(
        "/bookings",
        json={"student_id": student.id, "day": CLASS_DAY, "time_slot": "10:00-11:00"},
        headers=auth_headers(teacher),
    )
    outsider = make_user()
    response = await client.get(f"/bookings/{created.json()['id']}", headers=auth_headers(outsider))
    assert response.status_code == 403

    missing = await client.get("/bookings/999", headers=auth_headers(outsider))
    assert missing.status_code == 404


@pytest.mark.asyncio
async def test_attendance_outside_schedule(client, teacher, student, auth_headers):
    created = await client.post(
        "/bookings",
        json={"student_id": student.id, "day": CLASS_DAY, "time_slot": "10:00-11:00"},
        headers=auth_headers(teacher),
    )
    response = await client.post(
        f"/bookings/{created.json()['id']}/attendance",
        json={"role": "STUDENT"},
        headers=auth_headers(student),
    )
    assert response.status_code == 400
    body = response.json()
    assert body["outside_schedule"] is True
    assert body["minutes_until_open"] > 0


@pytest.mark.asyncio
async def test_students_cannot_create_bookings(client, teacher, student, auth_headers):
    response = await client.post(
        "/bookings",
        json={"teacher_id": teacher.id, "student_id": student.id, "day": CLASS_DAY, "time_slot": "10:00-11:00"},
        headers=auth_headers(student),
    )
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_invalid_payload_uses_error_shape(client, teacher, auth_headers):
    response = await client.post("/bookings", json={"day": "not-a-date"}, headers=auth_headers(teacher))
    assert response.status_code == 400
    body = response.json()
    assert body["error"] == "Invalid request"
    assert "student_id" in body["fields"]


@pytest.mark.asyncio
async def test_credit_grant_spend_and_shortfall(client, admin, student, auth_headers):
    granted = await client.post(
        "/credits/grant",
        json={"user_id": student.id, "amount": 100, "description": "Welcome"},
        headers=auth_headers(admin),
    )
    assert granted.status_code == 200
    assert granted.json()["transaction"]["metadata"]["granted_by"] == admin.id

    spent = await client.post(
        "/credits/spend",
        json={"amount": 20, "transaction_type": "SPEND_PRODUCT", "description": "Workbook"},
        headers=auth_headers(student),
    )
    assert spent.status_code == 200
    assert spent.json()["balance"]["available_credits"] == 80

    short = await client.post(
        "/credits/spend",
        json={"amount": 100, "transaction_type": "SPEND_CLASS", "description": "Too much"},
        headers=auth_headers(student),
    )
    assert short.status_code == 400
    assert short.json()["missing"] == 20

    history = await client.get("/credits/transactions?limit=1", headers=auth_headers(student))
    body = history.json()
    assert body["total"] == 2
    assert body["has_more"] is True
    assert body["items"][0]["amount"] == -20


@pytest.mark.asyncio
async def test_credit_grant_requires_admin(client, student, auth_headers):
    response = await client.post(
        "/credits/grant",
        json={"user_id": student.id, "amount": 100, "description": "Free money"},
        headers=auth_headers(student),
    )
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_purchase_replay_is_harmless(client, session, student, auth_headers):
    pkg = ledger.create_package(session, name="Starter", credits=10, bonus_credits=2, price=Decimal("29.00"))
    payload = {"package_id": pkg.id, "payment_reference": "PAYPAL-123"}

    first = await client.post("/credits/purchases", json=payload, headers=auth_headers(student))
    second = await client.post("/credits/purchases", json=payload, headers=auth_headers(student))
    assert first.json()["created"] is True
    assert second.json()["created"] is False
    assert second.json()["balance"]["available_credits"] == 12

    packages = await client.get("/credits/packages")
    assert [p["name"] for p in packages.json()["items"]] == ["Starter"]


@pytest.mark.asyncio
async def test_paid_booking_via_api(client, session, teacher, student, auth_headers):
    ledger.add_credits(session, student.id, 3, TransactionType.PURCHASE, "Pack")
    response = await client.post(
        "/bookings/paid",
        json={"teacher_id": teacher.id, "day": CLASS_DAY, "time_slot": "10:00-11:00", "cost": 5},
        headers=auth_headers(student),
    )
    assert response.status_code == 400
    assert response.json()["required"] == 5


@pytest.mark.asyncio
async def test_activity_completion_and_progress(client, teacher, student, auth_headers):
    created = await client.post(
        "/activities",
        json={"title": "Listening drill", "activity_type": "LISTENING", "points": 120, "is_published": True},
        headers=auth_headers(teacher),
    )
    assert created.status_code == 201
    activity_id = created.json()["id"]

    for _ in range(2):
        done = await client.post(
            f"/activities/{activity_id}/progress",
            json={"status": "COMPLETED", "score": 88},
            headers=auth_headers(student),
        )
        assert done.status_code == 200

    progress = await client.get("/rewards/progress", headers=auth_headers(student))
    assert progress.json()["experience"] == 120
    assert progress.json()["current_level"] == 2
    assert progress.json()["streak"] == 1

    board = await client.get("/rewards/leaderboard", headers=auth_headers(teacher))
    assert board.json()["items"][0]["user_id"] == student.id


@pytest.mark.asyncio
async def test_exam_flow(client, teacher, student, auth_headers):
    created = await client.post(
        "/exams",
        json={
            "title": "Quick check",
            "is_published": True,
            "questions": [
                {"question_type": "MULTIPLE_CHOICE", "prompt": "2+2?", "options": ["3", "4"],
                 "correct_answer": "4", "points": 1},
            ],
        },
        headers=auth_headers(teacher),
    )
    assert created.status_code == 201
    exam = created.json()
    assert "correct_answer" not in exam["questions"][0]

    started = await client.post(f"/exams/{exam['id']}/attempts", headers=auth_headers(student))
    attempt_id = started.json()["attempt"]["id"]

    saved = await client.put(
        f"/exams/attempts/{attempt_id}/answers",
        json={"question_id": exam["questions"][0]["id"], "answer": "4"},
        headers=auth_headers(student),
    )
    assert saved.json() == {"question_id": exam["questions"][0]["id"], "saved": True}

    submitted = await client.post(f"/exams/attempts/{attempt_id}/submit", headers=auth_headers(student))
    body = submitted.json()
    assert body["status"] == "COMPLETED"
    assert body["score"] == 100.0
    assert body["passed"] is True


@pytest.mark.asyncio
async def test_available_teachers_route(client, teacher, student, make_user, auth_headers):
    busy = make_user(RoleName.TEACHER)
    await client.post(
        "/bookings",
        json={"student_id": student.id, "day": CLASS_DAY, "time_slot": "10:00-11:00"},
        headers=auth_headers(busy),
    )
    response = await client.get(
        "/bookings/available-teachers",
        params={"day": CLASS_DAY, "time_slot": "10:30-11:30"},
        headers=auth_headers(student),
    )
    assert response.status_code == 200
    assert [t["id"] for t in response.json()["items"]] == [teacher.id]


@pytest.mark.asyncio
async def test_grant_to_missing_user_is_not_found(client, admin, auth_headers):
    response = await client.post(
        "/credits/grant",
        json={"user_id": 9999, "amount": 50, "description": "Typo"},
        headers=auth_headers(admin),
    )
    assert response.status_code == 404
    assert response.json()["error"] == "User not found"
