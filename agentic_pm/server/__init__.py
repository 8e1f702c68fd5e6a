"""HTTP server for reviewing and deciding governance state.

The FastAPI application in ``agentic_pm.server.main`` exposes held actions,
graduation state, budget status and autonomy capabilities under ``/api/v1``.
"""
