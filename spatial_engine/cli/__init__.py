"""
Command-line interface for Spatial Engine.
"""
from .app import app, main

__all__ = ['app', 'main']
