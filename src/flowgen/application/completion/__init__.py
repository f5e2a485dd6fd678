"""Completion handlers, one per job type."""

from flowgen.application.completion.campaign import CampaignCompletionHandler
from flowgen.application.completion.clone import VoiceCloneCompletionHandler
from flowgen.application.completion.thread import ThreadCompletionHandler
from flowgen.application.completion.transcript import TranscriptCompletionHandler
from flowgen.application.completion.video import VideoCompletionHandler

__all__ = [
    "CampaignCompletionHandler",
    "ThreadCompletionHandler",
    "TranscriptCompletionHandler",
    "VideoCompletionHandler",
    "VoiceCloneCompletionHandler",
]
