"""
Core modules for Summary Guard.

This package contains actor and plan resolution, the quota ledger,
the artifact cache, the summary orchestrator and the recomputation sweep.
"""
