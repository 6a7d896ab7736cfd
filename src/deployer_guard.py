"""Safety guard for operations that change a real AWS account.

Deploying the stack, registering action targets and running remediations
outside of dry-run all mutate the target account. They are refused unless
BOTH environment variables are set:
- ALLOW_AWS_DEPLOY=1
- DEPLOY_CONFIRM=I_ACCEPT_COSTS
"""
import os
import sys

CONFIRM_TOKEN = "I_ACCEPT_COSTS"


def _env_flag_true(val: str | None) -> bool:
    return (val or "").lower() in ("1", "true", "yes")


def is_deploy_allowed() -> bool:
    """True only if ALLOW_AWS_DEPLOY is truthy and DEPLOY_CONFIRM carries the token."""
    allow = _env_flag_true(os.getenv("ALLOW_AWS_DEPLOY"))
    confirm = os.getenv("DEPLOY_CONFIRM", "") == CONFIRM_TOKEN
    return allow and confirm


def require_deploy_allowed_or_exit(message: str | None = None) -> None:
    """Exit with status 2 unless account-changing operations are confirmed.

    Call this right before the first mutating AWS call of a command that was
    explicitly asked to apply changes (``--apply``).
    """
    if is_deploy_allowed():
        return

    sys.stderr.write("ERROR: Changes to a real AWS account are disabled by default.\n")
    sys.stderr.write("To enable them, set BOTH environment variables:\n")
    sys.stderr.write("  ALLOW_AWS_DEPLOY=1\n")
    sys.stderr.write(f"  DEPLOY_CONFIRM={CONFIRM_TOKEN}\n")
    if message:
        sys.stderr.write(f"{message}\n")
    sys.exit(2)
