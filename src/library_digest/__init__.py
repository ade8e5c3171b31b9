"""library-digest -- pull files from an FTP source and summarize them with Ollama.

Core modules:
    config       -- Pipeline configuration via pydantic-settings (.env + env vars)
    cli          -- Click CLI: `run` (once or polling) and `status`
    coordinator  -- Stage graph owner: listing -> filter -> fetch -> route into
                    lanes; run_once, poll, abort
    lanes        -- Bounded LaneQueue (block or reject when full) and Lane worker
                    pools. Dequeue is FIFO; completion order is not.
    progress_db  -- SQLite progress store (is_done / mark_done, retry counting,
                    monotonic per-source marker)
    ai           -- Summarizer (openai SDK against Ollama /v1) and VisionClient
                    (httpx against Ollama /api/chat), prompt builders
    backend      -- OllamaBackend scoped handle: verify server, pull model
    extract      -- Text extraction (pypdf, python-docx, plain text)
    sanitize     -- Local filename generation for remote paths
    concurrency  -- Single-instance file lock and disk space checks

Subpackages:
    remote  -- Remote sources (FTP via ftplib)
    stages  -- Listing/filter, fetch, route, and the document/image lane workers
"""
