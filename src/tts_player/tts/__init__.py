"""
Chunked Generation Pipeline Components.

    - chunker.py: Sentence-aligned text splitting
    - client.py: Upstream speech API client
    - classifier.py: Error classification tables
    - dispatch.py: Concurrency, spacing and rate-limit gate
    - generator.py: Per-request chunk orchestration
    - assembler.py: ffmpeg concat remux
    - temp_store.py: Scoped working directories and stale-file sweeps
"""
