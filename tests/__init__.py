"""
Mainspring Test Suite

This directory contains tests for the Mainspring state manager:
- Unit tests for models, codec, lockers and store
- Process-level tests for lock release on holder death
- End-to-end tests for the locked mutation lifecycle and the CLI
"""
