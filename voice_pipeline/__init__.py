"""
Speech pipeline for the landing voice widget.

Audio clip -> transcription -> assistant reply -> synthesized speech.
No HTTP or rate limiting here (chat_api responsibility).

- orchestrator: stage sequencing, short circuits and degradation
- gemini: the three stages backed by Gemini REST calls
- audio: WAV / data URI helpers
- instructions: prompts and canned replies per scenario
"""
