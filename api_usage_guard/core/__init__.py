"""
Core modules for API Usage Guard.

This package contains the usage ledger, admission checks, reporting
and README badge rendering.
"""
