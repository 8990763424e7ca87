from lingua.clients.sound_of_text import SpeechClient, poll_until

__all__ = ["SpeechClient", "poll_until"]
