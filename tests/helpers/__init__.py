"""
Test helper utilities for kasina-breath testing.

This module provides reusable utilities for:
- Generating synthetic breathing force data and belt packets
- Faking the BLE scanner, client and clocks
"""
