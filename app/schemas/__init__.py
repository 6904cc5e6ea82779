"""
schemas/ — Pydantic request models and response serializers

Input validation for the portal and admin endpoints, and the structured
ErrorResponse every handler in main.py returns.
"""
