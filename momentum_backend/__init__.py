"""
Backend package for the Momentum goal tracking app.

This package provides a FastAPI application with database and queue
abstractions that take over the rules the mobile client used to run
against its hosted database: weekly chat limits, day streaks, App Store
receipt verification and subscription entitlements.
"""
