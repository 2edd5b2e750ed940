"""PondControl: schedule execution and device-control reconciliation for pond actuators."""
