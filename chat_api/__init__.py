"""
Chat API for the landing voice widget.

Server side of the widget:
- POST/GET /api/token: short-lived LiveKit session credentials
- POST /api/chat: speech-to-text -> response -> text-to-speech pipeline
- Per-client fixed-window rate limiting on both endpoints
"""
