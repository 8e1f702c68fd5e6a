"""Service singletons and FastAPI dependencies used by the API routers."""
