"""Utility module for ftptree.

This module provides cross-cutting utilities:
- Logging: Configured logging with PII redaction
- Validators: Input validation for hosts, ports, timeouts and remote paths
"""
