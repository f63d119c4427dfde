"""
ctxauth Demo Application

Copyright (c) 2025 Gimel Foundation and the persons identified as the document authors.
All rights reserved. This file is subject to the Gimel Foundation's Legal Provisions Relating to GiFo Documents.
See http://GimelFoundation.com or https://github.com/Gimel-Foundation for details.
Code Components extracted from GiFo-RfC 0111 must include this license text and are provided without warranty.

This demo walks through:
- A role-based allow with its audit event
- A time-bounded delegation that lapses without a revoke call
- A context switch rejected by the tenant's domain whitelist
- Context switch rate limiting
- Reading back and decrypting the audit trail
"""

import asyncio
import secrets
import sys
from datetime import datetime, timedelta, timezone

from ctxauth import (
    Config,
    ContextSwitchRejected,
    CorporateContext,
    CtxAuth,
    PermissionNode,
    Principal,
    RateLimitExceeded,
)
from ctxauth.core.config import AuditConfig, FeatureFlags
from ctxauth.types import AuditEventType, parse_capabilities


class DemoClock:
    """Manually advanced clock so expiry can be shown without waiting."""

    def __init__(self):
        self.now = datetime(2025, 1, 1, 9, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, delta: timedelta) -> None:
        self.now += delta


def build_config() -> Config:
    return Config(
        features=FeatureFlags(
            inheritance=True,
            context_switching=True,
            delegation=True,
            elevation=True,
        ),
        audit=AuditConfig(encryption_key=secrets.token_urlsafe(32)),
    )


async def run_demo() -> int:
    """Main demo function"""
    print("ctxauth Demo Application")
    print("=" * 50)
    print()

    clock = DemoClock()
    engine = await CtxAuth.new(
        build_config(),
        roles=[
            PermissionNode("viewer", parse_capabilities(["read:report"])),
            PermissionNode("editor", parse_capabilities(["write:report"]), frozenset({"viewer"})),
        ],
        tenants=[
            CorporateContext("contextA", "Company A", frozenset({"company.com"}), sso_enabled=True,
                             inheritance_enabled=True),
            CorporateContext("contextB", "Company B", frozenset({"company.com"})),
            CorporateContext("partner", "Partner Corp", frozenset({"partner.org"})),
        ],
        principals=[
            Principal("alice", "company.com", {"viewer"}),
            Principal("bob", "company.com", {"editor"}),
            Principal("carol", "company.com"),
        ],
        clock=clock,
    )
    print("✓ Created engine with 2 roles and 3 tenants")
    print()

    print("Step 1: Role-based decision")
    print("-" * 40)
    decision = await engine.authorize("alice", "read", "report", "contextA")
    print(f"  alice read:report in contextA -> {decision.reason_code.value} (event {decision.event_id})")
    print()

    print("Step 2: Time-bounded delegation")
    print("-" * 40)
    delegation = await engine.delegate("bob", "carol", ["write:report"], timedelta(hours=1), "contextA")
    print(f"✓ bob delegated write:report to carol until {delegation.expires_at.isoformat()}")
    decision = await engine.authorize("carol", "write", "report", "contextA")
    print(f"  carol write:report now -> {decision.reason_code.value}")
    clock.advance(timedelta(hours=1, seconds=1))
    decision = await engine.authorize("carol", "write", "report", "contextA")
    print(f"  carol write:report after expiry -> {decision.reason_code.value}")
    print()

    print("Step 3: Context switching")
    print("-" * 40)
    session = await engine.start_session("alice", "contextA")
    try:
        await engine.switch_context(session.session_id, "partner")
        print("✗ Switch into partner should have been rejected")
    except ContextSwitchRejected as e:
        print(f"✓ Switch rejected: {e.message}")
        print(f"  - Session still in {engine.contexts.get_session(session.session_id).context_id}")

    switches = 0
    try:
        targets = ["contextB", "contextA"]
        while True:
            await engine.switch_context(session.session_id, targets[switches % 2])
            switches += 1
    except RateLimitExceeded as e:
        print(f"✓ {switches} switches admitted, then rate limited ({e.category.value})")
    await engine.end_session(session.session_id)
    print()

    print("Step 4: Audit trail")
    print("-" * 40)
    events = await engine.ledger.query(principal="carol", event_type=AuditEventType.AUTHORIZATION_DECISION)
    for event in events:
        details = engine.ledger.decrypt_payload(event)
        print(f"  {event.timestamp.isoformat()} {event.decision:5} {event.reason_code.value} "
              f"cached={details.get('cached')} encrypted={event.encrypted}")
    print()

    await engine.close()
    print("Demo completed successfully!")
    return 0


def main() -> int:
    try:
        return asyncio.run(run_demo())
    except KeyboardInterrupt:
        print("\nDemo interrupted by user")
        return 1


if __name__ == "__main__":
    sys.exit(main())
