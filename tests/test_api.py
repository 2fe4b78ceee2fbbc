"""HTTP API tests for the scheduling endpoints.

Requests run against the real clock; the test day (2030-01-07) is far
enough ahead that every slot is in the future and cancellations fall in
the full refund window.
"""

from decimal import Decimal
from unittest.mock import AsyncMock

import pytest
from httpx import AsyncClient

from carequeue.api.deps import get_payment_gateway
from carequeue.main import app
from carequeue.models.scheduling import DoctorProfile
from carequeue.services.payments import PaymentGateway, PaymentGatewayError
from tests.conftest import auth_headers

DAY = "2030-01-07"


async def book(client: AsyncClient, slot_id: str, headers: dict, **extra) -> dict:
    response = await client.post(
        "/api/v1/appointments/book",
        json={"slot_id": slot_id, "slot_type": "clinic", **extra},
        headers=headers,
    )
    assert response.status_code == 201, response.text
    return response.json()


async def book_and_pay(client: AsyncClient, slot_id: str, headers: dict, **extra) -> dict:
    data = await book(client, slot_id, headers, **extra)
    response = await client.post(
        f"/api/v1/appointments/{data['id']}/payment",
        json={"payment_reference": f"order_{data['id'][:8]}"},
        headers=headers,
    )
    assert response.status_code == 200, response.text
    return response.json()


class TestAuthentication:
    """Actor tokens and permissions."""

    async def test_booking_requires_token(self, client: AsyncClient, clinic_slots) -> None:
        response = await client.post(
            "/api/v1/appointments/book",
            json={"slot_id": clinic_slots[0].id, "slot_type": "clinic"},
        )

        assert response.status_code == 401

    async def test_unknown_actor_type(self, client: AsyncClient, clinic_slots) -> None:
        response = await client.post(
            "/api/v1/appointments/book",
            json={"slot_id": clinic_slots[0].id, "slot_type": "clinic"},
            headers=auth_headers("robot", "r-1"),
        )

        assert response.status_code == 403

    async def test_patient_cannot_use_staff_endpoints(
        self, client: AsyncClient, doctor: DoctorProfile, patient_headers: dict
    ) -> None:
        response = await client.get(f"/api/v1/queue/{doctor.id}/{DAY}", headers=patient_headers)

        assert response.status_code == 403

    async def test_staff_booking_needs_patient_id(
        self, client: AsyncClient, clinic_slots, staff_headers: dict
    ) -> None:
        response = await client.post(
            "/api/v1/appointments/book",
            json={"slot_id": clinic_slots[0].id, "slot_type": "clinic"},
            headers=staff_headers,
        )

        assert response.status_code == 400


class TestDoctorsApi:
    """Doctor profiles and schedules."""

    async def test_create_doctor_and_schedule(
        self, client: AsyncClient, staff_headers: dict
    ) -> None:
        response = await client.post(
            "/api/v1/doctors",
            json={"name": "Dr. Neha Iyer", "consultation_duration": 20, "clinic_fee": "300"},
            headers=staff_headers,
        )
        assert response.status_code == 201
        doctor_id = response.json()["id"]

        response = await client.put(
            f"/api/v1/doctors/{doctor_id}/schedule",
            json={
                "days": [
                    {
                        "day_of_week": 1,
                        "windows": [{"start_time": "10:00", "end_time": "11:00"}],
                    }
                ]
            },
            headers=staff_headers,
        )
        assert response.status_code == 200
        assert response.json()[0]["day_of_week"] == 1

        response = await client.get(f"/api/v1/slots/{doctor_id}/2030-01-08")
        assert response.status_code == 200
        assert [s["start_time"] for s in response.json()] == ["10:00:00", "10:20:00", "10:40:00"]

    async def test_invalid_window_rejected(
        self, client: AsyncClient, doctor: DoctorProfile, staff_headers: dict
    ) -> None:
        response = await client.put(
            f"/api/v1/doctors/{doctor.id}/schedule",
            json={
                "days": [
                    {
                        "day_of_week": 2,
                        "windows": [{"start_time": "12:00", "end_time": "11:00"}],
                    }
                ]
            },
            headers=staff_headers,
        )

        assert response.status_code == 400

    async def test_special_date_overrides_template(
        self, client: AsyncClient, doctor: DoctorProfile, staff_headers: dict
    ) -> None:
        response = await client.post(
            f"/api/v1/doctors/{doctor.id}/special-dates",
            json={
                "date": "2030-01-08",
                "is_available": True,
                "windows": [
                    {"start_time": "14:00", "end_time": "16:00", "consultation_type": "online"}
                ],
            },
            headers=staff_headers,
        )
        assert response.status_code == 201

        response = await client.get(f"/api/v1/doctors/{doctor.id}/schedule/2030-01-08")
        data = response.json()
        assert data["source"] == "special_date"
        assert data["is_available"] is True
        assert len(data["windows"]) == 1

        response = await client.delete(
            f"/api/v1/doctors/{doctor.id}/special-dates/2030-01-08", headers=staff_headers
        )
        assert response.status_code == 204

        response = await client.get(f"/api/v1/doctors/{doctor.id}/schedule/2030-01-08")
        assert response.json()["source"] == "none"
        assert response.json()["is_available"] is False

    async def test_unknown_doctor(self, client: AsyncClient) -> None:
        response = await client.get("/api/v1/doctors/missing")

        assert response.status_code == 404
        assert response.json()["code"] == "not_found"


class TestSlotsApi:
    """Slot listing, holds and blocks."""

    async def test_list_available_slots(
        self, client: AsyncClient, doctor: DoctorProfile
    ) -> None:
        clinic = await client.get(f"/api/v1/slots/{doctor.id}/{DAY}")
        online = await client.get(
            f"/api/v1/slots/{doctor.id}/{DAY}", params={"consultation_type": "online"}
        )

        assert len(clinic.json()) == 6
        assert all(s["consultation_type"] == "in_clinic" for s in clinic.json())
        assert len(online.json()) == 6

    async def test_hold_slot(
        self, client: AsyncClient, clinic_slots, patient_headers: dict
    ) -> None:
        response = await client.post(
            f"/api/v1/slots/{clinic_slots[0].id}/hold",
            json={"slot_type": "clinic"},
            headers=patient_headers,
        )

        assert response.status_code == 200
        assert response.json()["status"] == "held"
        assert response.json()["held_by"] == "patient-1"

        response = await client.post(
            "/api/v1/appointments/book",
            json={"slot_id": clinic_slots[0].id, "slot_type": "clinic"},
            headers=auth_headers("patient", "patient-2"),
        )
        assert response.status_code == 409

    async def test_block_slot_hides_it(
        self, client: AsyncClient, doctor: DoctorProfile, clinic_slots, staff_headers: dict
    ) -> None:
        response = await client.put(
            f"/api/v1/slots/{clinic_slots[0].id}/block",
            json={"blocked": True, "reason": "Lunch"},
            headers=staff_headers,
        )
        assert response.status_code == 200
        assert response.json()["status"] == "blocked"

        available = await client.get(f"/api/v1/slots/{doctor.id}/{DAY}")
        assert len(available.json()) == 5

        everything = await client.get(
            f"/api/v1/slots/{doctor.id}/{DAY}", params={"available_only": "false"}
        )
        assert everything.json()[0]["status"] == "blocked"


class TestBookingApi:
    """Booking and its error codes."""

    async def test_patient_books_slot(
        self, client: AsyncClient, doctor: DoctorProfile, clinic_slots, patient_headers: dict
    ) -> None:
        data = await book(client, clinic_slots[0].id, patient_headers, reason="Back pain")

        assert data["patient_id"] == "patient-1"
        assert data["token_number"] == 1
        assert data["amount"] == 500.0
        assert data["status"] == "pending"
        assert data["booking_source"] == "online"

        available = await client.get(f"/api/v1/slots/{doctor.id}/{DAY}")
        assert clinic_slots[0].id not in {s["id"] for s in available.json()}

    async def test_staff_books_for_patient(
        self, client: AsyncClient, clinic_slots, staff_headers: dict
    ) -> None:
        data = await book(client, clinic_slots[0].id, staff_headers, patient_id="patient-9")

        assert data["patient_id"] == "patient-9"
        assert data["booking_source"] == "receptionist"

    async def test_double_booking_conflict(
        self, client: AsyncClient, clinic_slots, patient_headers: dict
    ) -> None:
        await book(client, clinic_slots[0].id, patient_headers)

        response = await client.post(
            "/api/v1/appointments/book",
            json={"slot_id": clinic_slots[0].id, "slot_type": "clinic"},
            headers=auth_headers("patient", "patient-2"),
        )

        assert response.status_code == 409
        assert response.json()["code"] == "slot_unavailable"
        assert "choose another" in response.json()["detail"]

    async def test_slot_type_mismatch(
        self, client: AsyncClient, clinic_slots, patient_headers: dict
    ) -> None:
        response = await client.post(
            "/api/v1/appointments/book",
            json={"slot_id": clinic_slots[0].id, "slot_type": "online"},
            headers=patient_headers,
        )

        assert response.status_code == 422
        assert response.json()["code"] == "slot_type_mismatch"

    async def test_paused_pool(
        self, client: AsyncClient, doctor: DoctorProfile, clinic_slots, patient_headers: dict
    ) -> None:
        response = await client.put(
            f"/api/v1/doctors/{doctor.id}/booking-controls",
            json={"clinic_booking_paused": True, "pause_reason": "Doctor travelling"},
            headers=auth_headers("doctor", "doctor-1"),
        )
        assert response.status_code == 200

        response = await client.post(
            "/api/v1/appointments/book",
            json={"slot_id": clinic_slots[0].id, "slot_type": "clinic"},
            headers=patient_headers,
        )

        assert response.status_code == 409
        assert response.json()["code"] == "doctor_unavailable"

    async def test_patients_see_only_their_appointments(
        self, client: AsyncClient, clinic_slots, patient_headers: dict, staff_headers: dict
    ) -> None:
        data = await book(client, clinic_slots[0].id, patient_headers)

        own = await client.get(f"/api/v1/appointments/{data['id']}", headers=patient_headers)
        other = await client.get(
            f"/api/v1/appointments/{data['id']}", headers=auth_headers("patient", "patient-2")
        )
        staff = await client.get(f"/api/v1/appointments/{data['id']}", headers=staff_headers)

        assert own.status_code == 200
        assert other.status_code == 403
        assert staff.status_code == 200

    async def test_walk_in(
        self, client: AsyncClient, doctor: DoctorProfile, staff_headers: dict
    ) -> None:
        response = await client.post(
            "/api/v1/appointments/walk-in",
            json={"doctor_id": doctor.id, "date": DAY, "name": "Ravi", "appointment_time": "09:45"},
            headers=staff_headers,
        )

        assert response.status_code == 201
        data = response.json()
        assert data["status"] == "confirmed"
        assert data["booking_source"] == "walk_in"
        assert data["walk_in_name"] == "Ravi"
        assert data["token_number"] == 1


class TestLifecycleApi:
    """Transitions, refunds and cancellation."""

    async def test_confirm_then_illegal_transition(
        self, client: AsyncClient, clinic_slots, patient_headers: dict, staff_headers: dict
    ) -> None:
        data = await book(client, clinic_slots[0].id, patient_headers)
        url = f"/api/v1/appointments/{data['id']}/transition"

        response = await client.post(url, json={"target_status": "confirmed"}, headers=staff_headers)
        assert response.status_code == 200
        assert response.json()["status"] == "confirmed"

        response = await client.post(url, json={"target_status": "completed"}, headers=staff_headers)
        assert response.status_code == 409
        assert response.json()["code"] == "invalid_transition"

        history = await client.get(
            f"/api/v1/appointments/{data['id']}/history", headers=patient_headers
        )
        assert [h["to_status"] for h in history.json()] == ["pending", "confirmed"]

    async def test_patient_cannot_transition(
        self, client: AsyncClient, clinic_slots, patient_headers: dict
    ) -> None:
        data = await book(client, clinic_slots[0].id, patient_headers)

        response = await client.post(
            f"/api/v1/appointments/{data['id']}/transition",
            json={"target_status": "confirmed"},
            headers=patient_headers,
        )

        assert response.status_code == 403

    async def test_refund_preview_then_cancel(
        self, client: AsyncClient, doctor: DoctorProfile, clinic_slots, patient_headers: dict
    ) -> None:
        data = await book_and_pay(client, clinic_slots[0].id, patient_headers)

        preview = await client.get(
            f"/api/v1/appointments/{data['id']}/refund-preview", headers=patient_headers
        )
        assert preview.status_code == 200
        assert preview.json()["policy_applied"] == "full_refund"
        assert preview.json()["refund_amount"] == pytest.approx(487.5)
        assert preview.json()["gateway_fee_deducted"] == pytest.approx(12.5)

        response = await client.post(
            f"/api/v1/appointments/{data['id']}/cancel",
            json={"reason": "Travelling"},
            headers=patient_headers,
        )
        assert response.status_code == 200
        body = response.json()
        assert body["appointment"]["status"] == "cancelled"
        assert body["appointment"]["cancelled_by"] == "patient"
        assert body["appointment"]["payment_status"] == "refund_pending"
        assert body["refund"]["refund_amount"] == pytest.approx(487.5)

        available = await client.get(f"/api/v1/slots/{doctor.id}/{DAY}")
        assert len(available.json()) == 6

    async def test_unpaid_cancel_not_applicable(
        self, client: AsyncClient, clinic_slots, patient_headers: dict
    ) -> None:
        data = await book(client, clinic_slots[0].id, patient_headers)

        response = await client.post(
            f"/api/v1/appointments/{data['id']}/cancel", headers=patient_headers
        )

        assert response.status_code == 200
        assert response.json()["refund"]["policy_applied"] == "not_applicable"
        assert response.json()["refund"]["eligible"] is False

    async def test_doctor_cancellation_preview(
        self, client: AsyncClient, clinic_slots, patient_headers: dict, doctor_headers: dict
    ) -> None:
        data = await book_and_pay(client, clinic_slots[0].id, patient_headers)

        preview = await client.get(
            f"/api/v1/appointments/{data['id']}/refund-preview", headers=doctor_headers
        )

        assert preview.json()["policy_applied"] == "doctor_cancelled"
        assert preview.json()["refund_amount"] == pytest.approx(500.0)
        assert preview.json()["wallet_credit"] == pytest.approx(50.0)

    async def test_refund_policy(self, client: AsyncClient) -> None:
        response = await client.get("/api/v1/refunds/policy")

        assert response.status_code == 200
        data = response.json()
        assert data["full_refund_window_hours"] == 6.0
        assert data["partial_refund_percentage"] == 50
        assert len(data["rules"]) == 4


class TestPaymentApi:
    """Payment capture and its effect on refunds."""

    @pytest.fixture
    def gateway(self) -> AsyncMock:
        gateway = AsyncMock(spec=PaymentGateway)
        gateway.capture.return_value = "cap_test_1"
        app.dependency_overrides[get_payment_gateway] = lambda: gateway
        return gateway

    async def test_capture_marks_appointment_paid(
        self, client: AsyncClient, clinic_slots, patient_headers: dict, gateway: AsyncMock
    ) -> None:
        data = await book(client, clinic_slots[0].id, patient_headers)
        assert data["payment_status"] == "pending"

        response = await client.post(
            f"/api/v1/appointments/{data['id']}/payment",
            json={"payment_reference": "order_42"},
            headers=patient_headers,
        )

        assert response.status_code == 200
        assert response.json()["payment_status"] == "completed"
        assert response.json()["payment_reference"] == "cap_test_1"
        gateway.capture.assert_awaited_once_with("order_42", Decimal("500.00"))

    async def test_self_declared_payment_is_ignored(
        self, client: AsyncClient, clinic_slots, patient_headers: dict, gateway: AsyncMock
    ) -> None:
        data = await book(
            client,
            clinic_slots[0].id,
            patient_headers,
            payment_status="completed",
            payment_reference="made_up",
        )
        assert data["payment_status"] == "pending"
        assert data["payment_reference"] is None

        response = await client.post(
            f"/api/v1/appointments/{data['id']}/cancel", headers=patient_headers
        )

        assert response.status_code == 200
        assert response.json()["refund"]["policy_applied"] == "not_applicable"
        assert response.json()["appointment"]["payment_status"] == "pending"
        gateway.refund.assert_not_awaited()

    async def test_declined_capture(
        self, client: AsyncClient, clinic_slots, patient_headers: dict, gateway: AsyncMock
    ) -> None:
        gateway.capture.side_effect = PaymentGatewayError("Card declined")
        data = await book(client, clinic_slots[0].id, patient_headers)

        response = await client.post(
            f"/api/v1/appointments/{data['id']}/payment",
            json={"payment_reference": "order_42"},
            headers=patient_headers,
        )

        assert response.status_code == 402
        assert response.json()["code"] == "payment_failed"
        appointment = await client.get(
            f"/api/v1/appointments/{data['id']}", headers=patient_headers
        )
        assert appointment.json()["payment_status"] == "pending"

    async def test_capture_twice_rejected(
        self, client: AsyncClient, clinic_slots, patient_headers: dict, gateway: AsyncMock
    ) -> None:
        data = await book_and_pay(client, clinic_slots[0].id, patient_headers)

        response = await client.post(
            f"/api/v1/appointments/{data['id']}/payment",
            json={"payment_reference": "order_43"},
            headers=patient_headers,
        )

        assert response.status_code == 409
        assert gateway.capture.await_count == 1

    async def test_other_patient_cannot_pay(
        self, client: AsyncClient, clinic_slots, patient_headers: dict, gateway: AsyncMock
    ) -> None:
        data = await book(client, clinic_slots[0].id, patient_headers)

        response = await client.post(
            f"/api/v1/appointments/{data['id']}/payment",
            json={"payment_reference": "order_42"},
            headers=auth_headers("patient", "patient-2"),
        )

        assert response.status_code == 403
        gateway.capture.assert_not_awaited()

    async def test_patient_cannot_record_no_show(
        self, client: AsyncClient, clinic_slots, patient_headers: dict, gateway: AsyncMock
    ) -> None:
        data = await book_and_pay(client, clinic_slots[0].id, patient_headers)

        response = await client.post(
            f"/api/v1/appointments/{data['id']}/cancel",
            json={"reason": "no_show"},
            headers=patient_headers,
        )

        assert response.status_code == 403


class TestQueueApi:
    """Queue screens."""

    async def test_queue_flow(
        self,
        client: AsyncClient,
        doctor: DoctorProfile,
        clinic_slots,
        staff_headers: dict,
        doctor_headers: dict,
    ) -> None:
        first = await book(client, clinic_slots[0].id, staff_headers, patient_id="patient-1")
        second = await book(client, clinic_slots[1].id, staff_headers, patient_id="patient-2")

        response = await client.get(f"/api/v1/queue/{doctor.id}/{DAY}", headers=staff_headers)
        assert response.status_code == 200
        data = response.json()
        assert data["current_patient"] is None
        assert data["total_waiting"] == 2
        assert data["waiting"][0]["appointment"]["id"] == first["id"]

        response = await client.post(
            f"/api/v1/queue/appointments/{first['id']}/skip", headers=staff_headers
        )
        assert response.status_code == 200
        assert response.json()["skip_count"] == 1

        response = await client.post(
            f"/api/v1/queue/{doctor.id}/{DAY}/call-next", headers=doctor_headers
        )
        assert response.status_code == 200
        data = response.json()
        assert data["started"]["id"] == second["id"]
        assert data["queue"]["current_patient"]["id"] == second["id"]
        assert data["queue"]["total_waiting"] == 1

    async def test_call_next_empty(
        self, client: AsyncClient, doctor: DoctorProfile, doctor_headers: dict
    ) -> None:
        response = await client.post(
            f"/api/v1/queue/{doctor.id}/{DAY}/call-next", headers=doctor_headers
        )

        assert response.status_code == 404


class TestBlockDayApi:
    """Emergency leave through the API."""

    async def test_block_day(
        self,
        client: AsyncClient,
        doctor: DoctorProfile,
        clinic_slots,
        patient_headers: dict,
        doctor_headers: dict,
    ) -> None:
        data = await book_and_pay(client, clinic_slots[0].id, patient_headers)

        response = await client.post(
            f"/api/v1/doctors/{doctor.id}/block-day",
            json={"date": DAY, "reason": "Emergency"},
            headers=doctor_headers,
        )

        assert response.status_code == 200
        body = response.json()
        assert body["special_date"]["is_available"] is False
        assert [c["appointment_id"] for c in body["cancelled"]] == [data["id"]]
        assert body["cancelled"][0]["refund"]["policy_applied"] == "doctor_cancelled"

        slots = await client.get(f"/api/v1/slots/{doctor.id}/{DAY}")
        assert slots.json() == []
