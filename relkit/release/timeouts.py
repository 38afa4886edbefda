from __future__ import annotations

# GH / API operations
GH_TIMEOUT_SECONDS = 60.0

# Idempotent GH read retry policy
GH_READ_RETRY_ATTEMPTS = 3
GH_READ_RETRY_DELAY_SECONDS = 1.0

# Preflight checks and fix commands (formatters, linters, test suites)
CHECK_TIMEOUT_SECONDS = 10 * 60.0

# How long to wait for a pushed commit's workflow run to show up
CI_RUN_LOOKUP_ATTEMPTS = 10
CI_RUN_LOOKUP_DELAY_SECONDS = 3.0
