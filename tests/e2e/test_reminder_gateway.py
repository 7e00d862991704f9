"""
E2E tests for installment reminders against a running SMS gateway.

These tests require the mock SMS gateway to be running:
    uvicorn mock.sms_gateway.main:app --port 8003

Scenarios:
- delivered: gateway answers OK, installment flagged as reminded
- rejected: gateway refuses the number, flag stays unset
"""

import os
import pytest
from fastapi.testclient import TestClient
from school_ledger.api.dependencies import get_sms_client
from school_ledger.infrastructure.clients.messaging import SmsClient

GATEWAY_URL = os.getenv("SMS_GATEWAY_URL", "http://localhost:8003/api/v1/plain/")


def assign_single_installment(client: TestClient, school, headers, student_key: str = "student") -> str:
    template_id = client.post(
        "/v1/payment-plans",
        json={"name": "Transport", "total_cents": 120000, "installment_count": 1},
        headers=headers,
    ).json()["data"]["id"]
    plan = client.post(
        "/v1/payment-plans/assign",
        json={"student_id": str(school[student_key].id), "plan_id": template_id, "due_dates": ["2030-02-01"]},
        headers=headers,
    ).json()["data"]
    return plan["installments"][0]["id"]


@pytest.fixture
def live_gateway(client: TestClient):
    client.app.dependency_overrides[get_sms_client] = lambda: SmsClient(
        base_url=GATEWAY_URL, username="e2e", password="e2e", sender_id="QMJS"
    )
    return client


@pytest.mark.integration
def test_reminder_delivered(live_gateway: TestClient, school, headers):
    """
    delivered: parent phone on file, gateway accepts
    Expected: 200 and reminder_sent set
    """
    installment_id = assign_single_installment(live_gateway, school, headers)

    response = live_gateway.post(f"/v1/installments/{installment_id}/remind", headers=headers)

    assert response.status_code == 200
    assert response.json()["data"]["reminder_sent"] is True


@pytest.mark.integration
def test_reminder_rejected(live_gateway: TestClient, school, headers):
    """
    rejected: start the gateway with MOCK_SMS_REJECT=256772123456
    Expected: 502 MessagingError and the flag stays unset
    """
    if os.getenv("MOCK_SMS_REJECT") != "256772123456":
        pytest.skip("gateway not configured to reject the seeded number")

    installment_id = assign_single_installment(live_gateway, school, headers)

    response = live_gateway.post(f"/v1/installments/{installment_id}/remind", headers=headers)

    assert response.status_code == 502
    assert response.json()["error"]["kind"] == "MessagingError"
    listed = live_gateway.get("/v1/installments", headers=headers).json()["data"]
    assert listed[0]["reminder_sent"] is False
