#!/usr/bin/env python3
"""Golden path demo for PeerLab Gateway (assign, lease, inspect)."""

from __future__ import annotations

import json
import os
import sys
from typing import Any
from urllib.error import HTTPError
from urllib.request import Request, urlopen


def _env(name: str, default: str | None = None) -> str | None:
    value = os.environ.get(name)
    if value is None or value == "":
        return default
    return value


class HttpClient:
    def __init__(self, base_url: str, token: str | None = None) -> None:
        self.base_url = base_url.rstrip("/")
        self.headers: dict[str, str] = {"Content-Type": "application/json"}
        if token:
            self.headers["Authorization"] = f"Bearer {token}"

    def request_json(
        self,
        method: str,
        path: str,
        payload: dict[str, Any] | None = None,
        timeout: float = 10.0,
    ) -> dict[str, Any]:
        url = f"{self.base_url}{path}"
        data = None
        if payload is not None:
            data = json.dumps(payload).encode("utf-8")

        req = Request(url, data=data, method=method)
        for key, value in self.headers.items():
            req.add_header(key, value)

        try:
            with urlopen(req, timeout=timeout) as response:
                raw = response.read()
        except HTTPError as exc:
            detail = exc.read().decode("utf-8", errors="replace")
            raise RuntimeError(f"{method} {url} failed: {exc.code} {exc.reason}: {detail}") from None

        if not raw:
            return {}
        return json.loads(raw.decode("utf-8"))


def main() -> int:
    gateway_url = _env("PEERLAB_URL", "http://localhost:8080")
    # Any token works when the gateway runs with PEERLAB_BYPASS_JWT=true
    user_token = _env("PEERLAB_USER_TOKEN", "dev-token")
    agent_key = _env("PEERLAB_AGENT_KEY", "agent-key")
    duration_hours = int(_env("PEERLAB_LEASE_HOURS", "1"))

    user = HttpClient(gateway_url, token=user_token)
    agent = HttpClient(gateway_url, token=agent_key)

    print("Checking health...")
    health = user.request_json("GET", "/health")
    if health.get("status") != "healthy":
        raise RuntimeError(f"Unexpected health response: {health}")

    print("Requesting ASN...")
    asn_resp = user.request_json("POST", "/api/user/asn")
    asn = asn_resp.get("asn")
    print(f"ASN {asn}: {asn_resp.get('message')}")

    print(f"Leasing a /48 for {duration_hours}h...")
    lease = user.request_json(
        "POST", "/api/user/prefix", payload={"duration_hours": duration_hours}
    )
    print(f"Prefix {lease['prefix']} until {lease['end_time']}")

    info = user.request_json("GET", "/api/user/info")
    user_hash = info["user_hash"]
    if info.get("asn") != asn:
        raise RuntimeError(f"User info does not show ASN {asn}: {info}")
    if lease["prefix"] not in {l["prefix"] for l in info.get("active_leases", [])}:
        raise RuntimeError(f"Lease missing from user info: {info}")

    mapping = agent.request_json("GET", f"/service/mappings/{user_hash}")
    if mapping.get("asn") != asn or lease["prefix"] not in mapping.get("prefixes", []):
        raise RuntimeError(f"Service mapping out of sync: {mapping}")

    print(f"Golden path complete: {user_hash[:12]}... holds AS{asn} and {lease['prefix']}.")
    return 0


if __name__ == "__main__":
    try:
        raise SystemExit(main())
    except Exception as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        raise
