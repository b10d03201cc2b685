"""Data stores for persistence and caching.

Stores handle:
- PostgreSQL: DB session, deal repository, catalog rows
- Redis: deal cache tier, per-deal locks, TTL policies
- Memory: process-local deal tier (dev/tests)
- DealStore: write-through coordinator over the tiers

No lifecycle/business logic in stores - that belongs in services.
"""
