"""
Core Infrastructure for tts-player.

This package provides foundational components:
    - config.py: Configuration loading and validation
    - errors.py: Error taxonomy and TTSError hierarchy
    - logging/: Structured logging with numeric levels
    - metrics.py: Prometheus metrics collection
"""
