"""
Console front end for the voice widget.

Usage:
    python -m widget

Press Enter to start recording, Enter again to send, q + Enter to quit.
The chat API address comes from WIDGET_API_URL, the room from WIDGET_ROOM_NAME.
"""
import asyncio
import os
import sys
import uuid

from dotenv import load_dotenv

from logging_setup import setup_logging
from .api_client import WidgetApiClient
from .controller import SessionController
from .media import LiveKitMediaSession
from .microphone import SoundDeviceMicrophone
from .playback import SoundDevicePlayer
from .state import WidgetState
from .transcript import ChatTranscript, Message


def _print_message(message: Message) -> None:
    speaker = "you" if message.role.value == "user" else "assistant"
    print(f"[{speaker}] {message.text}")


async def main() -> None:
    load_dotenv(".env_local", override=False)
    load_dotenv(".env.local", override=False)

    transcript = ChatTranscript()
    transcript.subscribe(_print_message)

    controller = SessionController(
        os.getenv("WIDGET_ROOM_NAME", "landing-voice-ai-room"),
        f"user-{uuid.uuid4()}",
        api=WidgetApiClient(os.getenv("WIDGET_API_URL", "http://127.0.0.1:8000")),
        media=LiveKitMediaSession(),
        microphone=SoundDeviceMicrophone(),
        player=SoundDevicePlayer(),
        transcript=transcript,
        on_error=lambda e: print(f"! {getattr(e, 'message', e)}", file=sys.stderr),
    )

    await controller.connect()
    print("Connected. Enter = record / send, q = quit")

    loop = asyncio.get_running_loop()
    try:
        while True:
            line = await loop.run_in_executor(None, sys.stdin.readline)
            if not line or line.strip().lower() == "q":
                break
            if controller.state is WidgetState.RECORDING:
                print("Thinking...")
                await controller.stop_recording()
            elif await controller.start_recording():
                print("Listening... press Enter to send")
            if controller.state is WidgetState.DISCONNECTED:
                print("Session ended")
                break
    finally:
        await controller.aclose()


if __name__ == "__main__":
    setup_logging(level=os.getenv("LOG_LEVEL", "WARNING"), use_json=False, stream=sys.stderr)
    asyncio.run(main())
