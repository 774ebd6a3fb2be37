"""
Scheduler Test Suite.

- Job store invariants and atomic claim
- Dependency graph and ready set
- Circuit breaker and retry decisions
- Batch scheduling passes, recovery, service wiring
"""
