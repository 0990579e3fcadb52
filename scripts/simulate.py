"""
Order Rush Simulation Script

Fires concurrent orders at a running server to exercise the submission
workflow, the admin feed and the webhook worker under load.
Run from project root: python scripts/simulate.py

Orders are built from the live menu (GET /api/menu), mixing pickup and
delivery, typed addresses and map pins, cash and card.

Author: Bistro Engineering
Version: 1.0.0
"""

import argparse
import asyncio
import random
import sys
import time
from datetime import datetime
from decimal import Decimal
from typing import Any

import httpx

# Windows event loop fix
if sys.platform == "win32":
    asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())

# Configuration
API_BASE_URL = "http://localhost:8001"
TOTAL_ORDERS = 50

# Sample data for random orders
FIRST_NAMES = ["John", "Jane", "Mike", "Sarah", "Tom", "Emma", "David", "Lisa", "Chris", "Amy"]
LAST_NAMES = ["Smith", "Johnson", "Williams", "Brown", "Jones", "Garcia", "Miller", "Davis", "Wilson", "Taylor"]
STREETS = ["Main St", "Broadway", "5th Avenue", "Park Ave", "Madison Ave", "Lexington Ave", "Amsterdam Ave"]
NOTES = [None, "Extra napkins", "Ring doorbell", "No onions", "Call on arrival"]


def generate_random_customer() -> dict[str, Any]:
    """Generate random customer info."""
    first = random.choice(FIRST_NAMES)
    last = random.choice(LAST_NAMES)
    return {
        "name": f"{first} {last}",
        "phone": f"555-{random.randint(100, 999)}-{random.randint(1000, 9999)}",
        "email": f"{first.lower()}.{last.lower()}@example.com",
        "notes": random.choice(NOTES),
    }


def generate_order_payload(menu: list[dict]) -> dict[str, Any]:
    """Build a random order for /api/orders from the live menu."""
    dishes = random.sample(menu, k=min(len(menu), random.randint(1, 4)))
    items = [
        {"menu_item_id": dish["id"], "quantity": random.randint(1, 3)}
        for dish in dishes
    ]
    client_total = sum(
        (Decimal(dish["price"]) * line["quantity"] for dish, line in zip(dishes, items)),
        Decimal("0"),
    )

    customer = generate_random_customer()
    payload: dict[str, Any] = {
        "customer": customer,
        "fulfillment_method": random.choice(["delivery", "pickup"]),
        "payment_method": random.choice(["cash", "card"]),
        "items": items,
        "client_total": str(client_total),
    }

    if payload["fulfillment_method"] == "delivery":
        if random.random() < 0.5:
            customer["address"] = f"{random.randint(1, 999)} {random.choice(STREETS)}"
        else:
            payload["delivery_location"] = {
                "lat": round(40.70 + random.random() * 0.1, 5),
                "lng": round(-74.02 + random.random() * 0.1, 5),
            }

    return payload


async def fetch_menu(client: httpx.AsyncClient) -> list[dict]:
    response = await client.get(f"{API_BASE_URL}/api/menu")
    response.raise_for_status()
    return response.json()


async def send_order(
    client: httpx.AsyncClient,
    menu: list[dict],
    order_num: int,
) -> dict[str, Any]:
    """Submit one random order and time it."""
    payload = generate_order_payload(menu)
    start_time = time.time()

    try:
        response = await client.post(
            f"{API_BASE_URL}/api/orders",
            json=payload,
            timeout=30.0,
        )
    except httpx.HTTPError as e:
        return {
            "order_num": order_num,
            "success": False,
            "error": str(e)[:100] or e.__class__.__name__,
            "time": round(time.time() - start_time, 3),
        }

    elapsed = round(time.time() - start_time, 3)

    if response.status_code == 200:
        data = response.json()
        return {
            "order_num": order_num,
            "success": True,
            "order_id": data.get("order_id"),
            "total": Decimal(data.get("total_amount", "0")),
            "outcome": data.get("outcome"),
            "time": elapsed,
        }

    return {
        "order_num": order_num,
        "success": False,
        "status_code": response.status_code,
        "error": response.text[:100],
        "time": elapsed,
    }


# =============================================================================
# MAIN SIMULATION RUNNER
# =============================================================================

async def run_simulation(num_orders: int = TOTAL_ORDERS) -> dict[str, Any]:
    """
    Run the order rush.

    Args:
        num_orders: Number of orders to submit concurrently
    """
    print("=" * 70)
    print("ORDER RUSH SIMULATION")
    print("=" * 70)
    print(f"Total Orders: {num_orders}")
    print(f"Target: {API_BASE_URL}")
    print(f"Started: {datetime.now().strftime('%H:%M:%S')}")
    print("=" * 70)

    start_time = time.time()

    async with httpx.AsyncClient() as client:
        menu = await fetch_menu(client)
        if not menu:
            print("\nThe menu is empty; add dishes through /api/admin/menu first.")
            return {"total": num_orders, "successful": 0, "failed": num_orders, "results": []}

        tasks = [send_order(client, menu, i + 1) for i in range(num_orders)]
        results = await asyncio.gather(*tasks)

    total_time = round(time.time() - start_time, 2)

    successful = [r for r in results if r["success"]]
    failed = [r for r in results if not r["success"]]

    print("\n" + "=" * 70)
    print("SIMULATION RESULTS")
    print("=" * 70)

    print(f"\nSuccessful Orders: {len(successful)}/{num_orders}")
    print(f"Failed Orders: {len(failed)}/{num_orders}")
    print(f"Total Time: {total_time}s")

    if successful:
        avg_time = round(sum(r["time"] for r in successful) / len(successful), 3)
        total_revenue = sum((r["total"] for r in successful), Decimal("0"))
        to_payment = len([r for r in successful if r["outcome"] == "proceed_to_payment"])

        print("\nPerformance Metrics:")
        print(f"   Average Response: {avg_time}s")
        print(f"   Fastest: {min(r['time'] for r in successful)}s")
        print(f"   Slowest: {max(r['time'] for r in successful)}s")
        print(f"   Sent to payment: {to_payment}")
        print(f"   Total Revenue: ${total_revenue:.2f}")

    if failed:
        print("\nFailed Order Details (showing first 5):")
        for f in failed[:5]:
            print(f"   Order #{f['order_num']} [{f.get('status_code', '-')}]: {f.get('error')}")

    print("\n" + "=" * 70)
    print("VERIFICATION STEPS")
    print("=" * 70)
    print("1. Check the Celery terminal: one webhook task per order (when a URL is set)")
    print("2. GET /api/admin/orders?status=pending should list every successful order")
    print("3. An open admin feed (/ws/admin/orders) should have alerted once per order")
    print("=" * 70)

    return {
        "total": num_orders,
        "successful": len(successful),
        "failed": len(failed),
        "total_time": total_time,
        "results": results,
    }


async def preflight_checks() -> bool:
    """Check health and one order before the rush."""
    print("\n" + "=" * 70)
    print("PRE-FLIGHT CHECKS")
    print("=" * 70)

    async with httpx.AsyncClient() as client:
        print("\n1. Health Check...")
        response = await client.get(f"{API_BASE_URL}/health")
        if response.status_code != 200:
            print(f"   Failed: {response.text}")
            return False
        data = response.json()
        print(f"   Status: {data.get('status')}")
        print(f"   Database: {data.get('database')}")
        print(f"   Redis: {data.get('redis')}")

        print("\n2. Menu...")
        menu = await fetch_menu(client)
        print(f"   {len(menu)} dish(es) available")
        if not menu:
            return False

        print("\n3. Delivery address lookup...")
        response = await client.get(
            f"{API_BASE_URL}/api/delivery/address",
            params={"lat": 40.7128, "lng": -74.0060},
        )
        result = response.json()
        print(f"   Resolved: {result.get('success')} - {result.get('address') or result.get('error_message')}")

        print("\n4. Single order...")
        result = await send_order(client, menu, 0)
        if not result["success"]:
            print(f"   Failed: {result.get('error')}")
            return False
        print(f"   Order #{result['order_id']} created (${result['total']}, {result['outcome']})")

    print("\n" + "=" * 70)
    return True


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Order Rush Simulation Script")
    parser.add_argument("--orders", type=int, default=TOTAL_ORDERS, help="Number of orders")
    parser.add_argument("--url", default=API_BASE_URL, help="Server base URL")
    parser.add_argument("--skip-tests", action="store_true", help="Skip pre-flight checks")
    args = parser.parse_args()

    API_BASE_URL = args.url.rstrip("/")

    if not args.skip_tests:
        if not asyncio.run(preflight_checks()):
            print("\nPre-flight checks failed. Fix issues before running the simulation.")
            sys.exit(1)

        print("\nPre-flight checks passed!")
        input("\nPress Enter to start the order rush...")

    asyncio.run(run_simulation(args.orders))
