"""Application package for the Study Forest backend.

This package exposes the service, repository and model modules used by
the FastAPI application. Habit roster reconciliation lives in
`reconciliation`; calendar bucketing lives in `utils.calendar`.
"""
