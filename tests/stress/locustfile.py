"""
Tradebook Load Testing with Locust

Seed a database first (from the backend directory):
    python -m flask books init
    python -m flask books add-customer --code C001 --name "Load Customer"
    python -m flask books add-supplier --code S001 --name "Load Supplier"
    python -m flask books add-warehouse --code MAIN --name "Main"
    python -m flask books add-item --code SOAP --name "Soap" --sale-price-cents 1000 --tax-code GST18
    python -m flask books receive-stock --item-id 1 --warehouse-id 1 --quantity 100000

Run with:
    locust -f tests/stress/locustfile.py --host http://127.0.0.1:5001

Or headless:
    locust -f tests/stress/locustfile.py --host http://127.0.0.1:5001 \
           --users 10 --spawn-rate 2 --run-time 60s --headless

Pass thresholds:
- p95 response time < 500ms for reads
- p95 response time < 1000ms for writes
- Error rate < 1%

Expected business errors (409 InsufficientStock, ReturnQuantityExceeded,
InvalidState on a raced cancel) count as successes; 5xx never does.
"""

import os
import time
import random
from typing import Dict, List

from locust import HttpUser, task, between, events


# =============================================================================
# CONFIGURATION
# =============================================================================

CUSTOMER_ID = int(os.environ.get("LOAD_CUSTOMER_ID", "1"))
SUPPLIER_ID = int(os.environ.get("LOAD_SUPPLIER_ID", "1"))
WAREHOUSE_ID = int(os.environ.get("LOAD_WAREHOUSE_ID", "1"))
ITEM_ID = int(os.environ.get("LOAD_ITEM_ID", "1"))


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
        if name not in self.request_counts:
            self.request_counts[name] = 0
            self.error_counts[name] = 0
            self.response_times[name] = []

        self.request_counts[name] += 1
        if not success:
            self.error_counts[name] += 1
        self.response_times[name].append(response_time)

    def get_summary(self) -> Dict:
        summary = {}
        for name in self.request_counts:
            times = sorted(self.response_times[name])
            count = len(times)
            if count == 0:
                continue

            p50_idx = int(count * 0.50)
            p95_idx = int(count * 0.95)

            summary[name] = {
                "count": self.request_counts[name],
                "errors": self.error_counts[name],
                "error_rate": self.error_counts[name] / self.request_counts[name] * 100,
                "avg_ms": sum(times) / count,
                "p50_ms": times[p50_idx] if p50_idx < count else times[-1],
                "p95_ms": times[p95_idx] if p95_idx < count else times[-1],
            }
        return summary


metrics = MetricsCollector()


# =============================================================================
# USER BEHAVIORS
# =============================================================================

class TradebookUser(HttpUser):
    """Base user; every write carries an actor id as the upstream auth layer would."""
    wait_time = between(0.5, 2)
    abstract = True

    actor_id: int = 1
    confirmed_sales: List[int] = []

    def on_start(self):
        self.actor_id = random.randint(1, 50)

    def get_headers(self) -> Dict:
        return {"Content-Type": "application/json", "X-Actor-Id": str(self.actor_id)}

    def timed(self, name: str, method: str, url: str, ok=(200,), **kwargs):
        start = time.time()
        response = self.client.request(method, url, headers=self.get_headers(), name=name, **kwargs)
        metrics.record(name, (time.time() - start) * 1000, response.status_code in ok)
        return response


class BrowsingUser(TradebookUser):
    """Reads: invoice lists, stock and ledger reports."""
    weight = 3

    @task(5)
    def list_invoices(self):
        self.timed("invoices/list", "GET", "/api/invoices", params={"status": "confirmed", "limit": 20})

    @task(3)
    def stock_level(self):
        self.timed("stock/item", "GET", f"/api/stock/items/{ITEM_ID}", ok=(200, 404))

    @task(2)
    def customer_balance(self):
        self.timed("ledger/party_balance", "GET", f"/api/ledger/parties/customer/{CUSTOMER_ID}/balance", ok=(200, 404))

    @task(1)
    def trial_balance(self):
        self.timed("ledger/trial_balance", "GET", "/api/ledger/trial-balance")


class SalesUser(TradebookUser):
    """Creates and confirms sales, takes payments, raises returns."""
    weight = 2

    @task(4)
    def create_and_confirm_sale(self):
        response = self.timed(
            "invoices/create",
            "POST",
            "/api/invoices",
            ok=(201,),
            json={
                "kind": "sale",
                "party_id": CUSTOMER_ID,
                "warehouse_id": WAREHOUSE_ID,
                "lines": [{"item_id": ITEM_ID, "quantity": random.randint(1, 3)}],
            },
        )
        if response.status_code != 201:
            return

        invoice_id = response.json().get("invoice", {}).get("id")
        if not invoice_id:
            return

        response = self.timed("invoices/confirm", "POST", f"/api/invoices/{invoice_id}/confirm", ok=(200, 409))
        if response.status_code == 200:
            self.confirmed_sales.append(invoice_id)

    @task(2)
    def partial_payment(self):
        if not self.confirmed_sales:
            return
        invoice_id = random.choice(self.confirmed_sales[-10:])
        self.timed(
            "invoices/add_payment",
            "POST",
            f"/api/invoices/{invoice_id}/mark-partially-paid",
            ok=(200, 400, 409),
            json={"amount_cents": random.randint(100, 1000)},
        )

    @task(1)
    def return_one_unit(self):
        if not self.confirmed_sales:
            return
        invoice_id = random.choice(self.confirmed_sales[-10:])
        self.timed(
            "returns/create",
            "POST",
            f"/api/invoices/{invoice_id}/returns",
            ok=(201, 409),
            json={"lines": [{"item_id": ITEM_ID, "quantity": 1}], "reason": "Load test return"},
        )

    @task(1)
    def cancel_recent_sale(self):
        if not self.confirmed_sales:
            return
        invoice_id = self.confirmed_sales.pop()
        self.timed(
            "invoices/cancel",
            "POST",
            f"/api/invoices/{invoice_id}/cancel",
            ok=(200, 409),
            json={"reason": "Load test cancel"},
        )


class PurchasingUser(TradebookUser):
    """Keeps stock topped up through confirmed purchases."""
    weight = 1

    @task
    def create_and_confirm_purchase(self):
        response = self.timed(
            "purchases/create",
            "POST",
            "/api/invoices",
            ok=(201,),
            json={
                "kind": "purchase",
                "party_id": SUPPLIER_ID,
                "warehouse_id": WAREHOUSE_ID,
                "lines": [{"item_id": ITEM_ID, "quantity": random.randint(5, 20), "unit_price_cents": 600}],
            },
        )
        if response.status_code != 201:
            return
        invoice_id = response.json().get("invoice", {}).get("id")
        if invoice_id:
            self.timed("purchases/confirm", "POST", f"/api/invoices/{invoice_id}/confirm")


# =============================================================================
# EVENT HANDLERS
# =============================================================================

@events.test_stop.add_listener
def on_test_stop(environment, **kwargs):
    """Print summary when test stops."""
    print("\n" + "=" * 80)
    print("LOAD TEST SUMMARY")
    print("=" * 80)

    summary = metrics.get_summary()

    print(f"\n{'Endpoint':<30} {'Count':>8} {'Errors':>8} {'Err%':>8} {'Avg(ms)':>10} {'P95(ms)':>10}")
    print("-" * 80)

    total_requests = 0
    total_errors = 0
    all_pass = True

    for name, stats in sorted(summary.items()):
        total_requests += stats["count"]
        total_errors += stats["errors"]

        write = any(w in name for w in ("create", "confirm", "cancel", "payment"))
        p95_threshold = 1000 if write else 500
        passed = stats["p95_ms"] < p95_threshold and stats["error_rate"] < 1

        status = "PASS" if passed else "FAIL"
        if not passed:
            all_pass = False

        print(f"{name:<30} {stats['count']:>8} {stats['errors']:>8} {stats['error_rate']:>7.2f}% {stats['avg_ms']:>9.1f} {stats['p95_ms']:>9.1f} [{status}]")

    print("-" * 80)
    print(f"{'TOTAL':<30} {total_requests:>8} {total_errors:>8} {total_errors/max(total_requests,1)*100:>7.2f}%")
    print("=" * 80)

    if all_pass:
        print("\n[PASS] All endpoints within thresholds")
    else:
        print("\n[FAIL] Some endpoints exceeded thresholds")
        print("  - Reads (list/get): P95 < 500ms, Error rate < 1%")
        print("  - Writes (create/confirm/cancel): P95 < 1000ms, Error rate < 1%")

    print("=" * 80)
