"""
Prompt scenarios for the speech pipeline.

Each scenario defines:
- name: Scenario identifier
- transcription_prompt: Instructions for the speech-to-text stage
- assistant_prompt: Reply prompt; {transcription} is replaced by the user's words
- replies: Canned assistant replies (not_understood, empty_response)
"""
