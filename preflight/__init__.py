"""Preflight package — account client construction and access probes."""
from preflight.analyzer import (  # noqa: F401
    PreflightResult,
    ProbeResult,
    build_clients,
    print_preflight_report,
    probe_account,
    run_preflight,
)
