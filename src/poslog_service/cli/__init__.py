"""Command-line query commands that talk to a running poslog server."""
