#!/usr/bin/env python3
"""ShakeGuard phone simulator.

Registers a crowd of phones around a center point, streams sensor readings
from the local device and optionally injects a quake and a manual report.

Usage:
    # 20 phones around Istanbul, quiet sensors for one minute
    python -m tools.simulator.simulate --server http://localhost:8000 --phones 20 --duration 60

    # Inject 4 seconds of shaking 10 seconds in
    python -m tools.simulator.simulate --quake-at 10 --quake-seconds 4

    # Submit a manual intensity-6 report at the center once the phones are registered
    python -m tools.simulator.simulate --report 6
"""

from __future__ import annotations

import argparse
import asyncio
import math
import random
import time
import uuid
from dataclasses import dataclass

import httpx

GRAVITY = 9.81


@dataclass
class SimPhone:
    user_id: str
    lat: float
    lon: float
    fixes_sent: int = 0
    errors: int = 0


def scatter(center_lat: float, center_lon: float, radius_km: float) -> tuple[float, float]:
    """Random point within ``radius_km`` of the center."""
    angle = random.uniform(0, 2 * math.pi)
    dist_km = random.uniform(0, radius_km)
    lat = center_lat + (dist_km / 111.0) * math.cos(angle)
    lon = center_lon + (dist_km / (111.0 * math.cos(math.radians(center_lat)))) * math.sin(angle)
    return lat, lon


def make_sample_payload(device_id: str, shaking: bool) -> dict:
    """Accelerometer at rest reads gravity on z; shaking adds a few m/s² and some rotation."""
    amp = random.uniform(2.0, 5.0) if shaking else 0.05
    rot = random.uniform(0.1, 0.3) if shaking else 0.001
    return {
        "device_id": device_id,
        "accelerometer": {
            "x": random.gauss(0, amp),
            "y": random.gauss(0, amp),
            "z": GRAVITY + random.gauss(0, amp),
        },
        "gyroscope": {
            "x": random.gauss(0, rot),
            "y": random.gauss(0, rot),
            "z": random.gauss(0, rot),
        },
    }


async def register_phone(client: httpx.AsyncClient, server_url: str, phone: SimPhone) -> None:
    try:
        resp = await client.post(f"{server_url}/api/v1/location", json={
            "user_id": phone.user_id,
            "latitude": phone.lat,
            "longitude": phone.lon,
            "accuracy_m": random.randint(3, 30),
        })
        if resp.status_code == 200:
            phone.fixes_sent += 1
        else:
            phone.errors += 1
    except httpx.RequestError:
        phone.errors += 1


async def stream_samples(
    client: httpx.AsyncClient,
    server_url: str,
    device_id: str,
    rate_hz: float,
    duration_seconds: float,
    quake_at: float | None,
    quake_seconds: float,
) -> tuple[int, int]:
    """Post sensor readings for the local device. Returns (sent, errors)."""
    sent = errors = 0
    interval = 1.0 / rate_hz
    start = time.monotonic()
    while (elapsed := time.monotonic() - start) < duration_seconds:
        shaking = quake_at is not None and quake_at <= elapsed < quake_at + quake_seconds
        try:
            resp = await client.post(f"{server_url}/api/v1/samples",
                                     json=make_sample_payload(device_id, shaking))
            if resp.status_code == 200:
                sent += 1
                if resp.json()["detection"]["is_detected"]:
                    print(f"  [{elapsed:5.1f}s] earthquake detected")
            else:
                errors += 1
        except httpx.RequestError:
            errors += 1
        await asyncio.sleep(interval)
    return sent, errors


async def run_simulation(args: argparse.Namespace) -> None:
    """Run the full simulation."""
    center_lat, center_lon = args.center
    phones = [
        SimPhone(str(uuid.uuid4()), *scatter(center_lat, center_lon, args.radius_km))
        for _ in range(args.phones)
    ]

    print(f"Starting simulation: {args.phones} phones, {args.rate_hz} samples/s")
    print(f"  Center: {center_lat:.4f}, {center_lon:.4f}")
    print(f"  Radius: {args.radius_km} km")
    print(f"  Duration: {args.duration}s")
    print(f"  Server: {args.server}")
    if args.quake_at is not None:
        print(f"  Quake: at {args.quake_at}s for {args.quake_seconds}s")
    print()

    async with httpx.AsyncClient(timeout=10.0) as client:
        await asyncio.gather(*(register_phone(client, args.server, p) for p in phones))

        # The local device sits at the center.
        await client.post(f"{args.server}/api/v1/location", json={
            "latitude": center_lat, "longitude": center_lon, "accuracy_m": 5,
        })

        if args.report is not None:
            resp = await client.post(f"{args.server}/api/v1/reports", json={
                "latitude": center_lat,
                "longitude": center_lon,
                "intensity": args.report,
                "description": "Simulated report",
            })
            print(f"Manual report: {resp.status_code} {resp.json()}")

        sent, errors = await stream_samples(
            client, args.server, args.device_id, args.rate_hz, args.duration,
            args.quake_at, args.quake_seconds,
        )

        print("\nSimulation complete")
        print(f"  Phones registered: {sum(p.fixes_sent for p in phones)}")
        print(f"  Samples sent: {sent}")
        print(f"  Errors: {errors + sum(p.errors for p in phones)}")

        # Give the warning fanout time to settle.
        await asyncio.sleep(2.0)
        try:
            stats = (await client.get(f"{args.server}/api/v1/stats")).json()
            warnings = (await client.get(f"{args.server}/api/v1/warnings/recent")).json()
        except httpx.HTTPError:
            return
        print("\nServer stats:")
        print(f"  Events detected: {stats['events_detected']}")
        print(f"  Events recorded: {stats['events_recorded']}")
        print(f"  Reports received: {stats['reports_received']}")
        print(f"  Warnings sent: {stats['warnings_sent']}")
        print(f"  Active devices: {stats['active_devices']['total']}")
        for fanout in warnings["fanouts"]:
            print(f"  Fanout {fanout['earthquake_id'][:8]}: "
                  f"{fanout['sent']}/{fanout['total']} sent, {fanout['urgent']} urgent")


def main():
    parser = argparse.ArgumentParser(description="ShakeGuard phone simulator")
    parser.add_argument("--server", default="http://localhost:8000", help="Server URL")
    parser.add_argument("--phones", type=int, default=20, help="Number of simulated phones")
    parser.add_argument("--duration", type=int, default=60, help="Simulation duration in seconds")
    parser.add_argument("--rate-hz", type=float, default=2.0, help="Sensor posts per second")
    parser.add_argument("--center", type=str, default="41.015,28.979",
                        help="Center lat,lon (default: Istanbul)")
    parser.add_argument("--radius-km", type=float, default=60.0, help="Scatter radius in km")
    parser.add_argument("--device-id", default="sim-local-device",
                        help="device_id used for the local sensor stream")
    parser.add_argument("--quake-at", type=float, default=None,
                        help="Seconds into the run at which shaking starts")
    parser.add_argument("--quake-seconds", type=float, default=4.0,
                        help="Duration of the injected shaking")
    parser.add_argument("--report", type=float, default=None,
                        help="Submit a manual report with this intensity (1-10)")

    args = parser.parse_args()

    # Parse center
    lat, lon = args.center.split(",")
    args.center = (float(lat), float(lon))

    asyncio.run(run_simulation(args))


if __name__ == "__main__":
    main()
