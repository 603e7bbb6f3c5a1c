"""Application package for the graduate application tracker backend.

This package exposes the service, repository and model modules used by
the FastAPI application in `gradtracker.main`. Individual modules
contain the concrete implementations and documentation.
"""
