"""
InfraDesk Load Testing with Locust

Expects a server seeded with `flask system seed-demo`.

Run with:
    locust -f tests/stress/locustfile.py --host http://127.0.0.1:5000

Or headless:
    locust -f tests/stress/locustfile.py --host http://127.0.0.1:5000 \
           --users 10 --spawn-rate 2 --run-time 60s --headless

Pass thresholds:
- p95 response time < 500ms for reads
- p95 response time < 1000ms for writes
- Error rate < 1%

409 answers (capacity exhausted, level already resolved) are expected
under contention and counted as successes.
"""

import os
import time
import random
from typing import Optional, Dict, List

from locust import HttpUser, task, between, events


# =============================================================================
# CONFIGURATION
# =============================================================================

DEMO_PASSWORD = os.environ.get("INFRADESK_DEMO_PASSWORD", "Password123!")

REQUESTERS = ["developer", "designer"]
APPROVERS = ["depthead", "ithead", "admin"]

# Development phase from the demo seed
PHASE_ID = int(os.environ.get("INFRADESK_PHASE_ID", "1"))
RESOURCE_TYPES = ["Virtual Machine", "Storage"]
# Standard Virtual Machine, the approval-gated template the Development phase offers
TEMPLATE_IDS = [2]


# =============================================================================
# METRICS TRACKING
# =============================================================================

class MetricsCollector:
    """Collect and report metrics."""

    def __init__(self):
        self.request_counts: Dict[str, int] = {}
        self.error_counts: Dict[str, int] = {}
        self.response_times: Dict[str, List[float]] = {}

    def record(self, name: str, response_time: float, success: bool):
        self.request_counts.setdefault(name, 0)
        self.error_counts.setdefault(name, 0)
        self.response_times.setdefault(name, [])

        self.request_counts[name] += 1
        if not success:
            self.error_counts[name] += 1
        self.response_times[name].append(response_time)

    def get_summary(self) -> Dict:
        summary = {}
        for name, count in self.request_counts.items():
            times = sorted(self.response_times[name])
            if not times:
                continue
            p95_idx = min(int(len(times) * 0.95), len(times) - 1)
            summary[name] = {
                "count": count,
                "errors": self.error_counts[name],
                "error_rate": self.error_counts[name] / count * 100,
                "avg_ms": sum(times) / len(times),
                "p95_ms": times[p95_idx],
            }
        return summary


metrics = MetricsCollector()


# =============================================================================
# USER BEHAVIORS
# =============================================================================

class InfraDeskUser(HttpUser):
    """Base user that authenticates on start."""
    wait_time = between(0.5, 2)
    abstract = True

    usernames: List[str] = []
    token: Optional[str] = None

    def on_start(self):
        response = self.client.post(
            "/api/auth/login",
            json={"username": random.choice(self.usernames), "password": DEMO_PASSWORD},
            name="auth/login",
        )
        if response.status_code == 200:
            self.token = response.json().get("token")

    def get_headers(self) -> Dict:
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    def timed(self, name: str, ok_statuses, call):
        start = time.time()
        response = call()
        metrics.record(name, (time.time() - start) * 1000, response.status_code in ok_statuses)
        return response


class RequesterUser(InfraDeskUser):
    """Submits requests and checks pool availability."""
    weight = 3
    usernames = REQUESTERS

    @task(3)
    def submit_template_request(self):
        self.timed("requests/create_template", (201,), lambda: self.client.post(
            "/api/requests",
            json={
                "phase_id": PHASE_ID,
                "resource_template_id": random.choice(TEMPLATE_IDS),
                "requested_qty": 1,
                "justification": "Load test",
            },
            headers=self.get_headers(),
            name="requests/create_template",
        ))

    @task(2)
    def submit_type_request(self):
        self.timed("requests/create_type", (201, 409), lambda: self.client.post(
            "/api/requests",
            json={
                "phase_id": PHASE_ID,
                "resource_type": random.choice(RESOURCE_TYPES),
                "requested_qty": random.randint(1, 2),
            },
            headers=self.get_headers(),
            name="requests/create_type",
        ))

    @task(4)
    def check_availability(self):
        self.timed("resources/availability", (200,), lambda: self.client.get(
            "/api/resources/availability",
            params={"phase_id": PHASE_ID, "resource_type": random.choice(RESOURCE_TYPES)},
            headers=self.get_headers(),
            name="resources/availability",
        ))

    @task(2)
    def list_my_requests(self):
        self.timed("requests/list", (200,), lambda: self.client.get(
            "/api/requests", headers=self.get_headers(), name="requests/list"
        ))

    @task(1)
    def health_check(self):
        self.timed("system/health", (200,), lambda: self.client.get("/health", name="system/health"))


class ApproverUser(InfraDeskUser):
    """Works through the pending queue; races other approvers on the same level."""
    weight = 2
    usernames = APPROVERS

    @task
    def approve_next(self):
        response = self.timed("approvals/pending", (200,), lambda: self.client.get(
            "/api/approvals/pending", headers=self.get_headers(), name="approvals/pending"
        ))
        if response.status_code != 200:
            return

        pending = response.json().get("requests", [])
        if not pending:
            return

        target = random.choice(pending[:10])
        action = "reject" if random.random() < 0.1 else "approve"
        self.timed("approvals/post", (200, 409), lambda: self.client.post(
            "/api/approvals",
            json={
                "request_id": target["id"],
                "action": action,
                "level": target["current_level"] + 1,
            },
            headers=self.get_headers(),
            name="approvals/post",
        ))


# =============================================================================
# EVENT HANDLERS
# =============================================================================

@events.test_stop.add_listener
def on_test_stop(environment, **kwargs):
    """Print summary when test stops."""
    print("\n" + "=" * 80)
    print("LOAD TEST SUMMARY")
    print("=" * 80)

    print(f"\n{'Endpoint':<30} {'Count':>8} {'Errors':>8} {'Err%':>8} {'Avg(ms)':>10} {'P95(ms)':>10}")
    print("-" * 80)

    all_pass = True
    for name, stats in sorted(metrics.get_summary().items()):
        p95_threshold = 1000 if "create" in name or "post" in name else 500
        passed = stats["p95_ms"] < p95_threshold and stats["error_rate"] < 1
        all_pass = all_pass and passed

        status = "PASS" if passed else "FAIL"
        print(f"{name:<30} {stats['count']:>8} {stats['errors']:>8} {stats['error_rate']:>7.2f}% {stats['avg_ms']:>9.1f} {stats['p95_ms']:>9.1f} [{status}]")

    print("-" * 80)
    print("\n[PASS] All endpoints within thresholds" if all_pass else "\n[FAIL] Some endpoints exceeded thresholds")
    print("=" * 80)
