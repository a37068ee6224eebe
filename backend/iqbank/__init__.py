"""Application package for the IQ test and balance transfer backend.

This package exposes the service, repository and model modules used by
the FastAPI application. The two engines with real invariants live in
`assessment` (sampling and scoring) and `repositories.LedgerRepository`
(atomic settlement); the rest is thin HTTP and persistence glue.
"""
