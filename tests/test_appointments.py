# tests/test_appointments.py

from __future__ import annotations

from bson.objectid import ObjectId

from db import appointments_collection, donors_collection, follow_ups_collection


def schedule(client, headers, donor, **overrides):
    data = {
        "donor_id": donor["id"],
        "appointment_date": "2026-01-05T09:30:00",
        "appointment_type": "donation",
        "purpose": "research",
        "location": "bethesda",
        "uber_needed": "true",
        "uber_ordered": "true",
        "notes": "Bring ID",
    }
    data.update(overrides)
    response = client.post("/appointments", data=data, headers=headers)
    assert response.status_code == 201, response.text
    return response.json()["id"]


def test_schedule_and_fetch_with_donor_name(client, staff_headers, donor) -> None:
    appointment_id = schedule(client, staff_headers, donor)

    response = client.get(f"/appointments/{appointment_id}", headers=staff_headers)
    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "scheduled"
    assert body["donor_name"] == "Ada Lovelace"
    assert body["results"] is None


def test_schedule_rejects_unknown_donor_letter(client, staff_headers, donor) -> None:
    response = client.post(
        "/appointments",
        data={"donor_id": donor["id"], "appointment_date": "2026-01-05T09:30:00", "donor_letter": "Z"},
        headers=staff_headers,
    )
    assert response.status_code == 400


def test_list_filters_by_date_range(client, staff_headers, donor) -> None:
    schedule(client, staff_headers, donor, appointment_date="2026-01-05T09:30:00")
    schedule(client, staff_headers, donor, appointment_date="2026-02-10T14:00:00")

    response = client.get(
        "/appointments",
        params={"date_from": "2026-02-01", "date_to": "2026-02-28"},
        headers=staff_headers,
    )
    assert response.status_code == 200
    assert len(response.json()) == 1
    assert response.json()[0]["appointment_date"].startswith("2026-02-10")


def test_cancel_writes_reason_into_notes(client, staff_headers, donor) -> None:
    appointment_id = schedule(client, staff_headers, donor)

    response = client.post(
        f"/appointments/{appointment_id}/cancel",
        data={"reason": "donor_illness", "notes": "Has the flu"},
        headers=staff_headers,
    )
    assert response.status_code == 200
    stored = appointments_collection.find_one({})
    assert stored["status"] == "cancelled"
    assert stored["notes"] == "[Cancelled: Donor Illness] - Has the flu"


def test_reschedule_links_new_appointment(client, staff_headers, donor) -> None:
    appointment_id = schedule(client, staff_headers, donor)

    response = client.post(
        f"/appointments/{appointment_id}/reschedule",
        data={"new_date": "2026-01-12T14:00:00"},
        headers=staff_headers,
    )
    assert response.status_code == 201, response.text
    assert response.json()["message"] == "New appointment created for Jan 12, 2026 at 2:00 PM."

    old = client.get(f"/appointments/{appointment_id}", headers=staff_headers).json()
    assert old["status"] == "rescheduled"
    assert old["notes"] == "[Rescheduled to Jan 12, 2026 at 2:00 PM] | Original: Bring ID"

    new = client.get(f"/appointments/{response.json()['id']}", headers=staff_headers).json()
    assert new["status"] == "scheduled"
    assert new["rescheduled_from"] == appointment_id
    assert new["uber_ordered"] is False
    assert new["uber_needed"] is True
    assert new["purpose"] == "research"


def test_outcome_status(client, staff_headers, donor) -> None:
    appointment_id = schedule(client, staff_headers, donor)
    response = client.post(f"/appointments/{appointment_id}/status", data={"status": "no_show"},
                           headers=staff_headers)
    assert response.status_code == 200
    assert appointments_collection.find_one({})["status"] == "no_show"

    bad = client.post(f"/appointments/{appointment_id}/status", data={"status": "completed"},
                      headers=staff_headers)
    assert bad.status_code == 422


def test_results_complete_appointment_and_open_follow_up(client, staff_headers, donor) -> None:
    appointment_id = schedule(client, staff_headers, donor)

    missing_volume = client.post(f"/appointments/{appointment_id}/results", data={}, headers=staff_headers)
    assert missing_volume.status_code == 422

    response = client.post(
        f"/appointments/{appointment_id}/results",
        data={"volume_ml": "850", "cell_count": "2.4", "lot_number": "LOT-7"},
        headers=staff_headers,
    )
    assert response.status_code == 201, response.text

    assert appointments_collection.find_one({})["status"] == "completed"
    assert donors_collection.find_one({})["last_donation_date"] == "2026-01-05"
    follow_up = follow_ups_collection.find_one({})
    assert follow_up["status"] == "pending"
    assert str(follow_up["_id"]) == response.json()["follow_up_id"]

    again = client.post(f"/appointments/{appointment_id}/results", data={"volume_ml": "10"}, headers=staff_headers)
    assert again.status_code == 400


def test_donor_results_history(client, staff_headers, donor) -> None:
    staff = client.get("/users/me", headers=staff_headers).json()
    first = schedule(client, staff_headers, donor, donor_letter="B")
    client.post(
        f"/appointments/{first}/results",
        data={"volume_ml": "800", "final_vol_ml": "750", "cell_count": "2.0", "doctor_id": staff["id"]},
        headers=staff_headers,
    )
    second = schedule(client, staff_headers, donor, appointment_date="2026-02-09T10:00:00")
    client.post(f"/appointments/{second}/results", data={"volume_ml": "600", "cell_count": "3.0"},
                headers=staff_headers)

    # Marked completed before the lab numbers came back
    waiting = schedule(client, staff_headers, donor, appointment_date="2026-03-02T08:00:00")
    appointments_collection.update_one({"_id": ObjectId(waiting)}, {"$set": {"status": "completed"}})

    body = client.get(f"/donors/{donor['id']}/results", headers=staff_headers).json()
    assert body["total_donations"] == 2
    assert body["total_volume_ml"] == 1350
    assert body["average_cell_count"] == 2.5
    assert [a["id"] for a in body["awaiting_results"]] == [waiting]

    by_appointment = {r["appointment_id"]: r for r in body["results"]}
    assert by_appointment[first]["doctor_name"] == "Staff User"
    assert by_appointment[first]["appointment"]["donor_letter"] == "B"
    assert by_appointment[second]["doctor_name"] is None

    late = client.post(f"/appointments/{waiting}/results", data={"volume_ml": "500"}, headers=staff_headers)
    assert late.status_code == 201, late.text


def test_edit_donation_results(client, staff_headers, readonly_headers, donor) -> None:
    appointment_id = schedule(client, staff_headers, donor)
    result_id = client.post(f"/appointments/{appointment_id}/results", data={"volume_ml": "850"},
                            headers=staff_headers).json()["id"]

    updated = client.patch(f"/donation-results/{result_id}", data={"cell_count": "2.7", "lot_number": "LOT-9"},
                           headers=staff_headers)
    assert updated.status_code == 200, updated.text
    assert updated.json()["cell_count"] == 2.7
    assert updated.json()["volume_ml"] == 850

    assert client.patch(f"/donation-results/{result_id}", data={}, headers=staff_headers).status_code == 400
    assert client.patch(f"/donation-results/{result_id}", data={"volume_ml": "0"},
                        headers=staff_headers).status_code == 422
    assert client.patch(f"/donation-results/{result_id}", data={"lot_number": "X"},
                        headers=readonly_headers).status_code == 403


def test_readonly_cannot_schedule(client, readonly_headers, donor) -> None:
    response = client.post(
        "/appointments",
        data={"donor_id": donor["id"], "appointment_date": "2026-01-05T09:30:00"},
        headers=readonly_headers,
    )
    assert response.status_code == 403
