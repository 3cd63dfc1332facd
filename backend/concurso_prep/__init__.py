"""Application package for the exam-preparation study backend.

This package exposes the service, repository and model modules used by
the FastAPI application: study material listings (apostilas) and the
performance aggregator behind the study dashboard. Individual modules
contain the concrete implementations and documentation.
"""
