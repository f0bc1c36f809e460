"""
Locust Load Test Suite

Tokens are minted locally with the API's SECRET_KEY; seed one equipment row
first and pass its id in EQUIPMENT_ID.

Run scenarios:
  locust -f locustfile.py --tags contention   # Farmers racing for group slots
  locust -f locustfile.py --tags throughput   # Availability cache
  locust -f locustfile.py --tags edge         # Bad input
  locust -f locustfile.py                     # All tests
"""

import itertools
import os
import random
from datetime import datetime, timezone, timedelta

from locust import HttpUser, task, between, tag, events

from agripool.core.security import create_access_token

EQUIPMENT_ID = int(os.environ.get("EQUIPMENT_ID", "1"))
GROUP_SLOTS = 10

# Shared state
FARMER_IDS = itertools.count(100_000)
CONTENTION_GROUP_ID = None


def headers_for(user_id: int, role: str = "FARMER") -> dict:
    token = create_access_token({"sub": user_id, "role": role})
    return {"Authorization": f"Bearer {token}"}


def future_window(days_ahead: int, length: int) -> tuple[str, str]:
    start = (datetime.now(timezone.utc) + timedelta(days=days_ahead)).replace(
        hour=0, minute=0, second=0, microsecond=0
    )
    return start.isoformat(), (start + timedelta(days=length)).isoformat()


@events.test_start.add_listener
def on_test_start(environment, **kwargs):
    print("\n" + "="*60)
    print(f"SETUP: load testing equipment {EQUIPMENT_ID}")
    print("="*60)


class ContentionUser(HttpUser):
    """
    TEST 1: Contention - many farmers → one group of 10 slots

    Run: locust -f locustfile.py --tags contention -u 100 -r 50 --run-time 30s

    After test, verify:
      SELECT participant_count, max_participants FROM group_bookings WHERE id = X;
      SELECT SUM(share_amount) FROM group_participants WHERE group_booking_id = X;
    Count should be ≤ 10 and the shares should equal total_price
    """
    wait_time = between(0, 0.1)

    def on_start(self):
        self.farmer_id = next(FARMER_IDS)
        self.headers = headers_for(self.farmer_id)

        if not CONTENTION_GROUP_ID:
            start, end = future_window(random.randint(200, 600), 3)
            resp = self.client.post("/api/v1/group-bookings/",
                json={
                    "equipment_id": EQUIPMENT_ID,
                    "start_date": start,
                    "end_date": end,
                    "min_participants": 2,
                    "max_participants": GROUP_SLOTS,
                },
                headers=self.headers
            )
            if resp.status_code == 201:
                globals()["CONTENTION_GROUP_ID"] = resp.json()["id"]
                print(f"\n✓ Opened group {CONTENTION_GROUP_ID} with {GROUP_SLOTS} slots\n")

    @tag("contention")
    @task
    def join_group(self):
        """All users fight for the same slots."""
        if not CONTENTION_GROUP_ID:
            return

        with self.client.post(f"/api/v1/group-bookings/{CONTENTION_GROUP_ID}/join",
            headers=self.headers,
            name="/api/v1/group-bookings/{id}/join",
            catch_response=True
        ) as resp:
            if resp.status_code == 201:
                resp.success()
            elif resp.status_code == 409:
                resp.success()  # Expected: full or already joined
            else:
                resp.failure(f"Unexpected: {resp.status_code}")


class ThroughputUser(HttpUser):
    """
    TEST 2: Throughput - Availability cache effectiveness

    Run twice:
      1. With Redis: locust -f locustfile.py --tags throughput -u 100 -r 20 --run-time 60s
      2. Without Redis: REDIS_ENABLED=false on the API, run again
    """
    wait_time = between(0.1, 0.5)

    @tag("throughput", "read")
    @task(10)
    def availability(self):
        self.client.get(f"/api/v1/equipment/{EQUIPMENT_ID}/availability",
            name="/api/v1/equipment/{id}/availability [cached]")

    @tag("throughput", "read")
    @task(3)
    def available_groups(self):
        self.client.get(f"/api/v1/group-bookings/available/{EQUIPMENT_ID}",
            name="/api/v1/group-bookings/available/{id}")

    @tag("throughput")
    @task(1)
    def health_check(self):
        self.client.get("/health")


class EdgeCaseUser(HttpUser):
    """
    TEST 3: Edge cases - Bad input handling

    Run: locust -f locustfile.py --tags edge -u 20 -r 5 --run-time 30s

    System should NOT crash, return proper error codes.
    """
    wait_time = between(0.5, 1.5)

    def on_start(self):
        self.headers = headers_for(next(FARMER_IDS))

    def expect(self, resp, allowed):
        if resp.status_code in allowed:
            resp.success()
        else:
            resp.failure(f"Expected {allowed}, got {resp.status_code}")

    @tag("edge")
    @task
    def unknown_equipment(self):
        start, end = future_window(10, 2)
        with self.client.post("/api/v1/bookings/",
            json={"equipment_id": 999999, "start_date": start, "end_date": end},
            headers=self.headers,
            catch_response=True
        ) as resp:
            self.expect(resp, [404])

    @tag("edge")
    @task
    def reversed_dates(self):
        start, end = future_window(10, 2)
        with self.client.post("/api/v1/bookings/",
            json={"equipment_id": EQUIPMENT_ID, "start_date": end, "end_date": start},
            headers=self.headers,
            catch_response=True
        ) as resp:
            self.expect(resp, [400])

    @tag("edge")
    @task
    def past_dates(self):
        start, end = future_window(-10, 2)
        with self.client.post("/api/v1/bookings/",
            json={"equipment_id": EQUIPMENT_ID, "start_date": start, "end_date": end},
            headers=self.headers,
            catch_response=True
        ) as resp:
            self.expect(resp, [400])

    @tag("edge")
    @task
    def tiny_group(self):
        start, end = future_window(10, 2)
        with self.client.post("/api/v1/group-bookings/",
            json={
                "equipment_id": EQUIPMENT_ID,
                "start_date": start,
                "end_date": end,
                "min_participants": 1,
                "max_participants": 1,
            },
            headers=self.headers,
            catch_response=True
        ) as resp:
            self.expect(resp, [400])

    @tag("edge")
    @task
    def malformed_json(self):
        with self.client.post("/api/v1/bookings/",
            data="not json at all",
            headers=self.headers,
            catch_response=True
        ) as resp:
            self.expect(resp, [400, 422])

    @tag("edge")
    @task
    def unsigned_webhook(self):
        with self.client.post("/api/v1/payments/webhook",
            json={"event": "charge.success", "data": {"reference": "FORGED"}},
            catch_response=True
        ) as resp:
            self.expect(resp, [401])

    @tag("edge")
    @task
    def missing_auth(self):
        start, end = future_window(10, 2)
        with self.client.post("/api/v1/bookings/",
            json={"equipment_id": EQUIPMENT_ID, "start_date": start, "end_date": end},
            catch_response=True
        ) as resp:
            self.expect(resp, [401])


class RealisticUser(HttpUser):
    """
    TEST 4: Realistic mixed workload

    Run: locust -f locustfile.py -u 200 -r 20 --run-time 120s

    Mostly browsing availability, some booking requests and group joins.
    """
    wait_time = between(1, 3)

    def on_start(self):
        self.headers = headers_for(next(FARMER_IDS))

    @task(50)
    def browse_availability(self):
        self.client.get(f"/api/v1/equipment/{EQUIPMENT_ID}/availability")

    @task(20)
    def my_bookings(self):
        self.client.get("/api/v1/bookings/?page=1&page_size=20", headers=self.headers)

    @task(10)
    def request_booking(self):
        start, end = future_window(random.randint(30, 700), random.randint(1, 5))
        with self.client.post("/api/v1/bookings/",
            json={"equipment_id": EQUIPMENT_ID, "start_date": start, "end_date": end},
            headers=self.headers,
            catch_response=True
        ) as resp:
            if resp.status_code in (201, 409):
                resp.success()

    @task(5)
    def join_open_group(self):
        resp = self.client.get(f"/api/v1/group-bookings/available/{EQUIPMENT_ID}")
        if resp.status_code == 200 and resp.json():
            group_id = random.choice(resp.json())["id"]
            with self.client.post(f"/api/v1/group-bookings/{group_id}/join",
                headers=self.headers,
                name="/api/v1/group-bookings/{id}/join",
                catch_response=True
            ) as join_resp:
                if join_resp.status_code in (201, 409, 410):
                    join_resp.success()
