"""Reela video generation orchestrator.

This package submits prompt (and optionally media) seeded video generation
jobs to Veo, streams their progress to the caller as server-sent events and
stores the finished videos in Google Cloud Storage, recording them in
PostgreSQL when the caller is signed in.
"""
