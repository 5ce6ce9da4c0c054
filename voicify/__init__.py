"""
Voicify — Voice Commands by Demonstration

Record a sequence of on-screen interactions once, name it with a spoken
phrase, and replay it later by speaking the phrase again.

Usage:
    from voicify.service import VoicifyService

    service = VoicifyService(engine, bridge, store)
    service.start_recording()
    # ... accessibility events flow into service.on_accessibility_event() ...
    service.end_recording()
    service.save_recording("turn on wifi")

    service.on_voice_command("turn on the wifi")
"""

__version__ = "1.0.0"
