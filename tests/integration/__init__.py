"""
Integration tests for the tipqa service.

These run the FastAPI app in-process through httpx's ASGITransport and use a
temporary SQLite file for the thread log. OpenAI and the price feed are faked.
"""
