"""
Server Constants.

Static values shared by the FastAPI application and its routers.
"""

PROJECT_NAME = "agentic_pm Governance API"
API_V1_STR = "/api/v1"
