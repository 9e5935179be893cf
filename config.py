"""Configuration for the notification routing engine CLI and reports."""

# Reporting
METRICS_WINDOW_HOURS = 24  # trailing window for performance metrics

# CLI defaults
CLI_ADVANCE_MINUTES = 0.0  # virtual minutes to simulate after processing
CLI_STEP_MINUTES = 1.0  # virtual clock step while simulating
CLI_RESOLVED_BY = "cli"
CLI_JSON_INDENT = 2
