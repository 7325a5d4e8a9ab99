"""intake_server — FastAPI REST API for the intake engines.

Exposes the conversation and form engines, the sync reconciler and
reference data over HTTP, with per-session engine instances kept in an
in-process registry.
"""
