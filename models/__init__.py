"""
Pydantic schemas for the security API.
"""
