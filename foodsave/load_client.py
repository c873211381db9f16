#!/usr/bin/env python3
"""
FoodSave load client (async)

Simulates the browser flow against a server running with MockPay:
  1) POST /api/checkout                      -> {url, reservationId}
  2) Extract the session id from url (/mockpay/{session_id})
  3) POST /mockpay/{session_id}/emit  (t=completed|expired)
  4) Poll GET /api/checkout/session/{session_id} until status != pending

Usage:
  python -m foodsave.load_client --base http://localhost:3000 \
                                 --total 200 --concurrency 50
"""

import argparse
import asyncio
import random
import string
import time
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Dict, List, Optional

import httpx

from .catalog import PACKAGE_CATALOG

TERMINAL = ("paid", "expired")


def _rand_email() -> str:
    name = ''.join(
        random.choices(string.ascii_lowercase + string.digits, k=10)
    )
    return f"{name}@example.com"


def random_checkout_payload() -> Dict:
    ids = [e.id for e in PACKAGE_CATALOG]
    picked = random.sample(ids, k=random.randint(1, len(ids)))
    pickup = date.today() + timedelta(days=random.randint(0, 5))
    return {
        "items": [
            {"packageId": pid, "quantity": random.randint(1, 3)}
            for pid in picked
        ],
        "name": "Load Client",
        "phone": "+421900000000",
        "address": "Main street 1",
        "pickupDate": pickup.isoformat(),
        "pickupTime": "17:00",
        "email": _rand_email(),
    }


@dataclass
class Result:
    ok: bool
    outcome: str  # paid/expired/TIMEOUT/ERROR
    t_checkout: float = 0.0
    t_emit: float = 0.0
    t_observed: float = 0.0  # time until a terminal status was observed
    err: Optional[str] = None


@dataclass
class Stats:
    results: List[Result] = field(default_factory=list)

    def add(self, r: Result):
        self.results.append(r)

    def summary(self) -> Dict[str, float]:
        done = [r for r in self.results if r.outcome in TERMINAL]
        lat = sorted(r.t_observed for r in done if r.t_observed > 0)

        def pct(p):
            if not lat:
                return 0.0
            k = int(max(0, min(len(lat)-1, round(p/100*(len(lat)-1)))))
            return lat[k]
        return {
            "total": len(self.results),
            "ok": sum(1 for r in self.results if r.ok),
            "paid": sum(1 for r in self.results if r.outcome == "paid"),
            "expired": sum(1 for r in self.results if r.outcome == "expired"),
            "timeout": sum(1 for r in self.results if r.outcome == "TIMEOUT"),
            "error": sum(1 for r in self.results if r.outcome == "ERROR"),
            "p50_s": pct(50),
            "p90_s": pct(90),
            "avg_s": (sum(lat)/len(lat)) if lat else 0.0,
        }

    def print(self, elapsed_s: float):
        s = self.summary()
        print("\n=== Load Summary ===")
        print(
            f"Total: {int(s['total'])}   OK: {int(s['ok'])}   "
            f"PAID: {int(s['paid'])}   EXPIRED: {int(s['expired'])}   "
            f"TIMEOUT: {int(s['timeout'])}   ERROR: {int(s['error'])}"
        )
        print(
            f"Latency (observed resolution): avg {s['avg_s']:.3f}s   "
            f"p50 {s['p50_s']:.3f}s   p90 {s['p90_s']:.3f}s"
        )
        print(
            f"Wall time: {elapsed_s:.3f}s   "
            f"Throughput: {s['total']/elapsed_s:.1f} ops/s"
        )


async def one_order(
    client: httpx.AsyncClient,
    base: str,
    emit_kind: str,
    poll_interval_s: float,
    poll_timeout_s: float,
) -> Result:
    r = Result(ok=False, outcome="ERROR")

    # 1) checkout
    t0 = time.perf_counter()
    try:
        resp = await client.post(
            f"{base}/api/checkout", json=random_checkout_payload(),
            timeout=30.0,
        )
        resp.raise_for_status()
        redirect_url = resp.json()["url"]
    except (httpx.HTTPError, KeyError, ValueError) as e:
        r.err = f"checkout: {e}"
        return r
    r.t_checkout = time.perf_counter() - t0

    # 2) redirect url ends in /mockpay/{session_id}
    psid = redirect_url.rstrip("/").rsplit("/", 1)[-1]
    if "/mockpay/" not in redirect_url or not psid:
        r.err = f"bad redirect url: {redirect_url}"
        return r

    # 3) emit outcome (what the mock checkout page would do); the 303 goes to
    # the static thank-you page, which we do not follow
    t1 = time.perf_counter()
    try:
        resp = await client.post(
            f"{base}/mockpay/{psid}/emit", data={"t": emit_kind},
            timeout=30.0,
        )
        if resp.status_code >= 400:
            r.err = f"emit HTTP {resp.status_code}"
            return r
    except httpx.HTTPError as e:
        r.err = f"emit: {e}"
        return r
    r.t_emit = time.perf_counter() - t1

    # 4) poll reservation status
    t2 = time.perf_counter()
    deadline = t2 + poll_timeout_s
    status = "pending"
    try:
        while time.perf_counter() < deadline:
            g = await client.get(
                f"{base}/api/checkout/session/{psid}", timeout=10.0
            )
            if g.status_code == 200:
                status = g.json().get("status", status)
                if status in TERMINAL:
                    break
            await asyncio.sleep(poll_interval_s)
    except httpx.HTTPError as e:
        r.err = f"poll: {e}"
        return r

    r.t_observed = time.perf_counter() - t2
    r.ok = True
    r.outcome = status if status in TERMINAL else "TIMEOUT"
    return r


async def run_load(
    base: str,
    total: int,
    concurrency: int,
    expire_rate: float,
    poll_interval_s: float,
    poll_timeout_s: float,
) -> Stats:
    sem = asyncio.Semaphore(concurrency)
    stats = Stats()

    limits = httpx.Limits(
        max_keepalive_connections=concurrency, max_connections=concurrency
    )
    async with httpx.AsyncClient(
        limits=limits, headers={"User-Agent": "FoodSaveLoad/1.0"}
    ) as client:

        async def worker(n: int):
            async with sem:
                emit_kind = (
                    "expired" if random.random() < expire_rate
                    else "completed"
                )
                res = await one_order(
                    client, base, emit_kind, poll_interval_s, poll_timeout_s
                )
                stats.add(res)

        await asyncio.gather(*(worker(i) for i in range(total)))

    return stats


def main():
    ap = argparse.ArgumentParser(description="FoodSave load client")
    ap.add_argument("--base", default="http://localhost:3000",
                    help="Base URL of the app")
    ap.add_argument("--total", type=int, default=100,
                    help="Total reservations to run")
    ap.add_argument("--concurrency", type=int, default=20,
                    help="Concurrent workers")
    ap.add_argument("--expire-rate", type=float, default=0.0,
                    help="Fraction of sessions to expire instead of pay")
    ap.add_argument("--poll-interval", type=float, default=0.05,
                    help="Seconds between status polls")
    ap.add_argument("--poll-timeout", type=float, default=10.0,
                    help="Max seconds to wait for a terminal status")
    args = ap.parse_args()

    t_start = time.perf_counter()
    stats = asyncio.run(run_load(
        base=args.base.rstrip("/"),
        total=args.total,
        concurrency=args.concurrency,
        expire_rate=args.expire_rate,
        poll_interval_s=args.poll_interval,
        poll_timeout_s=args.poll_timeout,
    ))
    stats.print(time.perf_counter() - t_start)


if __name__ == "__main__":
    main()
