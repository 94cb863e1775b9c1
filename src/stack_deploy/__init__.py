"""Dependency-aware CloudFormation deployment engine."""

__version__ = '0.1.0'
