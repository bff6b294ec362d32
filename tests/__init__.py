"""
Test Suite for GroundControl

This package contains all tests for the task core:
- store, ordering and activity log
- task / prospect state machines, comments, time ledger, templates
- notifications, GitHub webhook boundary, config and HTTP API
"""
