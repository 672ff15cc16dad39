"""
Job Lifecycle Test Suite.

- Permission tests (table totality, role examples)
- Validator tests (edge, field and gate checks)
- Engine tests (snapshot computation, history/version invariants)
- Persistence tests (conditional writes, idempotency records)
- Notification tests (gateways, retry/backoff dispatcher)
- Service tests (idempotency, concurrency, escalation)
"""
