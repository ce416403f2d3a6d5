"""Clinic OPD appointment scheduling and token-allocation engine."""
