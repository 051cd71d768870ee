"""
Tenant access control and session concurrency for the restaurant platform.

Sub-packages:
- constants: role ladder and known feature flags
- platform: principals, access evaluation, guards
- entitlements: plan + override feature resolution with an in-process cache
- sessions: per-account session registry with heartbeat and eviction
- workers: backend jobs (stale-session reaper)
"""

__version__ = "0.4.0"
