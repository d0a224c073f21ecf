"""
Load tests using Locust.

Replays the gateway's duplicate delivery pattern: the success redirect and
several IPNs for the same transaction, fired concurrently.

Run with: LOAD_TEST_USER_ID=<existing user uuid> locust -f tests/load_test.py --host=http://localhost:8000
"""
import os
from urllib.parse import parse_qs, urlparse

from locust import HttpUser, between, task


class DuplicateCallbackUser(HttpUser):
    """
    Simulated payer whose payment is confirmed several times.

    Each run initiates one payment, then hammers its callbacks.
    """

    wait_time = between(0.1, 0.5)

    def on_start(self) -> None:
        """Initiate the payment the callbacks will target."""
        self.headers = {"X-User-Id": os.environ.get("LOAD_TEST_USER_ID", ""), "X-User-Role": "USER"}
        self.transaction_id = None

        with self.client.post(
            "/payments/initiate",
            json={"method": "SSLCOMMERZ", "amount": "100", "purpose": "MONTHLY_DONATION"},
            headers=self.headers,
            catch_response=True,
        ) as response:
            if response.status_code != 200:
                response.failure(f"Initiation failed: {response.status_code}")
                return
            response.success()

        # The sandbox session URL does not carry tran_id; take it from the newest own payment.
        listing = self.client.get("/payments/my-payments?limit=1", headers=self.headers)
        if listing.status_code == 200 and listing.json()["data"]:
            self.transaction_id = listing.json()["data"][0]["transaction_id"]

    @task(10)
    def duplicate_ipn(self) -> None:
        if not self.transaction_id:
            return
        with self.client.post(
            "/payments/ssl/ipn",
            data={"tran_id": self.transaction_id, "status": "VALID", "amount": "100.00"},
            name="/payments/ssl/ipn",
            catch_response=True,
        ) as response:
            if response.status_code == 200:
                response.success()
            else:
                response.failure(f"Unexpected status: {response.status_code}")

    @task(3)
    def duplicate_success(self) -> None:
        if not self.transaction_id:
            return
        with self.client.post(
            "/payments/ssl/success",
            data={"tran_id": self.transaction_id, "amount": "100.00"},
            allow_redirects=False,
            name="/payments/ssl/success",
            catch_response=True,
        ) as response:
            location = urlparse(response.headers.get("location", ""))
            if response.status_code == 303 and parse_qs(location.query).get("tranId") == [self.transaction_id]:
                response.success()
            else:
                response.failure(f"Unexpected redirect: {response.status_code}")

    @task(1)
    def late_cancel(self) -> None:
        """A cancel after completion must not revert PAID."""
        if not self.transaction_id:
            return
        self.client.post(
            "/payments/ssl/cancel",
            data={"tran_id": self.transaction_id},
            allow_redirects=False,
            name="/payments/ssl/cancel",
        )

    @task(1)
    def get_health(self) -> None:
        self.client.get("/health")


"""
Load Test Scenarios:

1. Duplicate delivery:
   locust -f tests/load_test.py --host=http://localhost:8000 --users=50 --spawn-rate=10

Success Criteria:
- Error rate: <1%
- p95 callback latency: <250ms
- Exactly one fund_transactions row per PAID donation
  (SELECT payment_id, count(*) FROM fund_transactions GROUP BY payment_id HAVING count(*) > 1
   returns no rows)
"""
