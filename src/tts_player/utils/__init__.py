"""
Utility Modules for tts-player.

    - timeit.py: Performance measurement utilities
"""
