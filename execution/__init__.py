"""
Execution core shared by every background unit of work.

- context: the ambient per-thread tenant/collective/run identifiers
- guard: snapshot, clear and restore of that context around a unit
- jobs: the Job base classes (TenantScopedJob, SystemJob) every task uses
"""
