"""
Canteen Rush Simulation Script

Seeds demo menus for a few canteens, then fires many concurrent student
sessions at the API: each one scans a QR payload, fills a cart, and
sometimes hops to another canteen mid-order.

Run against a running server from the project root:
    uvicorn canteen.main:app --port 8001
    python scripts/simulate.py --sessions 100

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
TOTAL_SESSIONS = 50
VENDOR_HEADERS = {"X-User-Role": "vendor"}

DEMO_MENUS = {
    "north-block": [
        {"name": "Masala Dosa", "price": "2.49", "category": "South Indian", "is_veg": True},
        {"name": "Idli Sambar", "price": "1.99", "category": "South Indian", "is_veg": True},
        {"name": "Filter Coffee", "price": "0.99", "category": "Drinks", "is_veg": True},
    ],
    "food-court": [
        {"name": "Pizza Margherita", "price": "8.99", "category": "Pizza", "is_veg": True},
        {"name": "Chicken Wrap", "price": "5.49", "category": "Wraps", "is_veg": False},
        {"name": "Cold Coffee", "price": "2.25", "category": "Drinks", "is_veg": True},
    ],
    "library-cafe": [
        {"name": "Veg Sandwich", "price": "3.10", "category": "Snacks", "is_veg": True},
        {"name": "Brownie", "price": "1.75", "category": "Desserts", "is_veg": True},
    ],
}


# =============================================================================
# SEEDING
# =============================================================================

async def seed_menus(client: httpx.AsyncClient) -> dict[str, dict[str, Any]]:
    """
    Create the demo menus (once) and fetch their QR payloads.

    Returns:
        Mapping of vendor_id to {"items": [...], "shop_payload": str}
    """
    vendors: dict[str, dict[str, Any]] = {}

    for vendor_id, items in DEMO_MENUS.items():
        listing = (await client.get(f"{API_BASE_URL}/api/vendors/{vendor_id}/menu")).json()
        if listing["total"] == 0:
            for item in items:
                response = await client.post(
                    f"{API_BASE_URL}/api/vendors/{vendor_id}/menu",
                    json=item,
                    headers=VENDOR_HEADERS,
                )
                response.raise_for_status()
            listing = (await client.get(f"{API_BASE_URL}/api/vendors/{vendor_id}/menu")).json()

        qr = await client.get(
            f"{API_BASE_URL}/api/vendors/{vendor_id}/qr",
            params={"vendor_name": vendor_id.replace("-", " ").title()},
            headers=VENDOR_HEADERS,
        )
        qr.raise_for_status()

        vendors[vendor_id] = {"items": listing["items"], "shop_payload": qr.json()["shop_payload"]}
        print(f"   🍽️  {vendor_id}: {listing['total']} item(s)")

    return vendors


# =============================================================================
# SESSION SIMULATION
# =============================================================================

async def run_session(
    client: httpx.AsyncClient,
    session_num: int,
    vendors: dict[str, dict[str, Any]],
) -> dict[str, Any]:
    """Scan a canteen QR, fill a cart, maybe switch canteen, then check totals."""
    session_id = f"sim-{session_num}-{random.randint(1000, 9999)}"
    start_time = time.time()
    expected: dict[str, Decimal] = {}

    try:
        vendor_id = random.choice(list(vendors))
        switched = False

        for step in range(random.randint(1, 6)):
            if step > 0 and random.random() < 0.15:
                vendor_id = random.choice(list(vendors))
                switched = True

            resolved = await client.post(
                f"{API_BASE_URL}/api/qr/resolve",
                json={"payload": vendors[vendor_id]["shop_payload"]},
            )
            resolved.raise_for_status()
            scanned_vendor = resolved.json()["vendor_id"]

            item = random.choice(vendors[scanned_vendor]["items"])
            response = await client.post(
                f"{API_BASE_URL}/api/carts/{session_id}/items",
                json={"vendor_id": scanned_vendor, "item_id": item["id"]},
            )
            response.raise_for_status()
            cart = response.json()["cart"]

            if cart["vendor_id"] != scanned_vendor:
                raise AssertionError(f"cart vendor {cart['vendor_id']} != {scanned_vendor}")
            if scanned_vendor not in expected:
                expected = {scanned_vendor: Decimal("0.00")}
            expected[scanned_vendor] += Decimal(item["price"])

        elapsed = round(time.time() - start_time, 3)
        total = Decimal(cart["total_price"])
        if total != expected[cart["vendor_id"]]:
            raise AssertionError(f"total {total} != expected {expected[cart['vendor_id']]}")

        await client.delete(f"{API_BASE_URL}/api/carts/{session_id}")
        return {
            "session_num": session_num,
            "success": True,
            "switched": switched,
            "total": total,
            "items": cart["item_count"],
            "time": elapsed,
        }
    except (httpx.HTTPError, AssertionError, KeyError) as e:
        return {
            "session_num": session_num,
            "success": False,
            "error": str(e)[:100],
            "time": round(time.time() - start_time, 3),
        }


# =============================================================================
# MAIN SIMULATION RUNNER
# =============================================================================

async def run_simulation(num_sessions: int = TOTAL_SESSIONS) -> dict[str, Any]:
    """
    Run the lunch-rush simulation.

    Args:
        num_sessions: Number of concurrent student sessions
    """
    print("=" * 70)
    print("🔥 CANTEEN RUSH SIMULATION")
    print("=" * 70)
    print(f"📋 Sessions: {num_sessions}")
    print(f"🎯 Target: {API_BASE_URL}")
    print(f"⏰ Started: {datetime.now().strftime('%H:%M:%S')}")
    print("=" * 70)

    async with httpx.AsyncClient(timeout=30.0) as client:
        health = await client.get(f"{API_BASE_URL}/health")
        health.raise_for_status()
        print(f"\n❤️  Health: {health.json()['status']} ({health.json()['storage_backend']} storage)")

        print("\n🌱 Seeding menus...")
        vendors = await seed_menus(client)

        print("\n🚀 Firing sessions...\n")
        start_time = time.time()
        results = await asyncio.gather(
            *(run_session(client, i + 1, vendors) for i in range(num_sessions))
        )
        total_time = round(time.time() - start_time, 2)

    successful = [r for r in results if r["success"]]
    failed = [r for r in results if not r["success"]]

    print("\n" + "=" * 70)
    print("📊 SIMULATION RESULTS")
    print("=" * 70)
    print(f"\n✅ Successful Sessions: {len(successful)}/{num_sessions}")
    print(f"❌ Failed Sessions: {len(failed)}/{num_sessions}")
    print(f"🔀 Vendor switches: {len([r for r in successful if r['switched']])}")
    print(f"⏱️  Total Time: {total_time}s")

    if successful:
        avg_time = round(sum(r["time"] for r in successful) / len(successful), 3)
        cart_value = sum((r["total"] for r in successful), Decimal("0.00"))
        print("\n📈 Performance Metrics:")
        print(f"   Average Session: {avg_time}s")
        print(f"   Slowest: {max(r['time'] for r in successful)}s")
        print(f"   💰 Cart Value: {cart_value}")

    if failed:
        print("\n⚠️  Failed Session Details (showing first 5):")
        for f in failed[:5]:
            print(f"   Session #{f['session_num']}: {f.get('error', 'Unknown error')}")

    print("=" * 70)

    return {
        "total": num_sessions,
        "successful": len(successful),
        "failed": len(failed),
        "total_time": total_time,
    }


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Canteen Rush Simulation")
    parser.add_argument("--sessions", type=int, default=TOTAL_SESSIONS, help="Number of sessions")
    parser.add_argument("--url", default=API_BASE_URL, help="API base URL")
    args = parser.parse_args()

    API_BASE_URL = args.url.rstrip("/")
    summary = asyncio.run(run_simulation(args.sessions))
    sys.exit(0 if summary["failed"] == 0 else 1)
