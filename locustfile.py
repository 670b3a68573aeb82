from datetime import date, timedelta

from locust import HttpUser, task, between
import random

CATEGORIES = ["Food & Dining", "Transportation", "Shopping", "Entertainment", "Bills & Utilities"]


class ApiUser(HttpUser):
    """Load profile; run the server with RATE_LIMIT_ENABLED=0 or every client will hit 429s."""

    wait_time = between(0.1, 0.5)

    def on_start(self):
        # Register a user for this simulated client
        email = f"user_{random.randint(1, 1_000_000_000)}@load.io"
        r = self.client.post("/auth/register", json={"name": "Load User", "email": email, "password": "secret1"})
        if r.status_code == 201:
            self.headers = {"Authorization": f"Bearer {r.json()['token']}"}
        else:
            self.headers = None

    @task(3)
    def create_transaction(self):
        if not self.headers:
            return
        amount = round(random.random() * 100, 2) + 0.01
        self.client.post(
            "/transactions",
            json={
                "type": random.choice(["income", "expense"]),
                "amount": str(amount),
                "description": "load test",
                "category": random.choice(CATEGORIES),
                "date": (date.today() - timedelta(days=random.randint(0, 365))).isoformat(),
            },
            headers=self.headers,
        )

    @task(2)
    def list_transactions(self):
        if self.headers:
            self.client.get("/transactions", params={"page": 1, "limit": 10}, headers=self.headers)

    @task(2)
    def overview(self):
        if self.headers:
            self.client.get("/analytics/overview", headers=self.headers)

    @task(1)
    def detailed(self):
        if self.headers:
            time_range = random.choice(["3months", "6months", "12months", "2years"])
            self.client.get(
                "/analytics/detailed", params={"timeRange": time_range}, headers=self.headers, name="/analytics/detailed"
            )
