"""Backend for the photo converter service.

This package keeps the FastAPI route handlers in server.py thin:
- temp file store for uploads and intermediate artifacts
- upload validation (count, type, size)
- conversion dispatch: one composer per output kind (zip, pdf, word, gif, image format)
- cleanup coordination so every stored file is deleted exactly once per request

Stored files are named by a fresh UUID4; never log or expose filesystem paths
in responses.
"""
