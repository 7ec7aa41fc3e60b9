"""
Client side of the landing voice widget.

Drives one chat session:
- fetches a LiveKit credential and joins the media session
- records microphone audio while publishing it as a live track
- sends the recording to the chat API and shows / plays the reply

Presentation is left to the caller; `python -m widget` is a console front end.
"""
