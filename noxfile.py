"""Noxfile for the GuardDuty remediation project.

Provides automated sessions for:
- Linting and formatting
- Testing with coverage
- Type checking
- Security scanning
- Package building
- CDK synthesis
"""

import nox

# Python versions to test against
PYTHON_VERSIONS = ["3.11"]

# Common locations
SRC_DIR = "src"
TESTS_DIR = "tests"


@nox.session(python=PYTHON_VERSIONS)
def tests(session):
    """Run the test suite with coverage."""
    session.install(".[test]")

    session.run(
        "pytest",
        "--cov=remediation",
        "--cov=dispatch",
        "--cov=ops",
        "--cov-report=term-missing",
        "--cov-report=html",
        "--cov-fail-under=80",
        *session.posargs,
    )


@nox.session(python=PYTHON_VERSIONS)
def lint(session):
    """Run linting with ruff."""
    session.install("ruff")
    session.run("ruff", "check", ".")


@nox.session(python=PYTHON_VERSIONS)
def format(session):
    """Format code with black and ruff."""
    session.install("black", "ruff")
    session.run("black", ".")
    session.run("ruff", "check", "--fix", ".")


@nox.session(python=PYTHON_VERSIONS)
def typecheck(session):
    """Run type checking with mypy."""
    session.install(".")
    session.install("mypy", "types-PyYAML")
    session.run("mypy", SRC_DIR)


@nox.session(python=PYTHON_VERSIONS)
def security(session):
    """Run security checks."""
    session.install("bandit[toml]", "safety")
    session.run("bandit", "-r", SRC_DIR, "infra")
    session.run("safety", "check")


@nox.session(python=PYTHON_VERSIONS)
def package(session):
    """Build the package."""
    session.install("build")
    session.run("python", "-m", "build")


@nox.session(python=PYTHON_VERSIONS)
def synth(session):
    """Build the Lambda asset and synthesize the CDK stack without deploying."""
    session.install(".")
    session.run("python", "scripts/package_lambda.py", "--apply")
    session.run("cdk", "synth", "--app", "python infra/app.py", external=True)


# Default session when running `nox` without arguments
nox.options.sessions = ["tests", "lint", "typecheck"]
