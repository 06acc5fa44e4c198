from datetime import datetime, timedelta, timezone

import pytest

BASE_TIME = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)


def _tx(
    tx_id: str,
    actor: str = "user-1",
    status: str = "SUCCESS",
    amount=25000,
    minutes: float = 0,
    **extra,
) -> dict:
    created = BASE_TIME + timedelta(minutes=minutes)
    tx = {
        "id": tx_id,
        "reference": f"REF-{tx_id}",
        "userId": actor,
        "amount": amount,
        "currency": "UGX",
        "type": "WALLET_TO_WALLET",
        "mode": "MOBILE",
        "status": status,
        "createdAt": created.isoformat().replace("+00:00", "Z"),
        "user": {"email": f"{actor}@example.com", "phone": "+256700000000", "firstName": "Amina"},
        "metadata": {"ipAddress": "10.0.0.7", "location": "Kampala", "device": "android"},
    }
    tx.update(extra)
    return tx


@pytest.fixture
def make_tx():
    return _tx
