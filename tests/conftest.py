"""Shared test setup: required settings must exist before mailscout.config is imported."""
import os
import tempfile

os.environ.setdefault("OPENAI_API_KEY", "test-openai-key")
os.environ.setdefault("FIRECRAWL_API_KEY", "test-firecrawl-key")
os.environ.setdefault("CACHE_BACKEND", "memory")
os.environ.setdefault("LOG_DIR", os.path.join(tempfile.gettempdir(), "mailscout-test-logs"))
