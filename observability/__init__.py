"""
Structured event emission shared by the chat API and the speech pipeline.
"""
