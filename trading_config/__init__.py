"""
Configuration Management Module

Main Components:
- settings: environment-backed service settings (pydantic-settings)
- contracts: Polygon contract addresses and protocol constants
"""

from .settings import Settings, load_settings, normalize_base64_secret

__all__ = [
    'Settings',
    'load_settings',
    'normalize_base64_secret',
]
