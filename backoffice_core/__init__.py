"""
Back-office Core Package

Django project package for the fund back-office platform:
- Settings driven by environment variables (python-decouple)
- Root URL configuration
- WSGI entry point
"""

__version__ = '1.0.0'
