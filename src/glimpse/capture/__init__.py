"""Screen and audio producers."""

from glimpse.capture.audio import AudioContextSlot, AudioSession
from glimpse.capture.scheduler import CaptureScheduler, PeriodicTask
from glimpse.capture.sources import AudioSource, FrameSource, TextExtractor, Transcriber

__all__ = [
    "AudioContextSlot",
    "AudioSession",
    "AudioSource",
    "CaptureScheduler",
    "FrameSource",
    "PeriodicTask",
    "TextExtractor",
    "Transcriber",
]
