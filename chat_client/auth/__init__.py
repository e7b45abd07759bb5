"""
Authentication package for the Chat CLI.

This package contains the session token lifecycle: per-user session storage,
latest-wins signalling, the login action and the two background renewal loops.
"""
