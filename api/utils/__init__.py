"""
Shared utilities for the StudyAI backend.

Modules:
- documents: Reading documents from disk and writing extraction results
- validation: Input validation for request fields
"""
