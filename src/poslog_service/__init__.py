"""
poslog_service

Self-hosted log ingestion and viewing service: open ingestion, a
session-protected query/delete API, a file drive, and a retention sweeper.
"""

__version__ = "0.1.0"
