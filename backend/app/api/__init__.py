"""Inventory search REST API package.

Sub-modules expose FastAPI routers for each domain:
- search: item search, suggestions and highlighting
- admin: search capability report and extension installation
"""
