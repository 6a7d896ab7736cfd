"""GuardDuty finding remediation pipeline.

This package provides the routing and remediation core including:
- Exact-match routing of GuardDuty findings to notification sinks
- A stateless Security Hub action target registry
- Custom action dispatch to idempotent remediators
- A human-gated workflow recording each finding's path

The Lambda entry points in ``dispatch`` and ``ops`` are thin wrappers
around these modules.
"""

__version__ = "0.1.0"
