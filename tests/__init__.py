"""
StudyAI Backend Test Suite

Test organization:
- test_extract_text.py: Document format detection and text extraction
- test_llm_client.py: Outbound HTTP clients
- test_conversations.py, test_auth.py, test_config.py, test_utils.py: Supporting modules
- test_server.py: HTTP routes through FastAPI's TestClient
"""
