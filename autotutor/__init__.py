"""AutoTutor: topic -> lesson + quiz, plus a follow-up tutoring chat."""

__version__ = "0.3.0"
