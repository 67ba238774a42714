from .envelopes import make_error_frame, make_event_frame

__all__ = ["make_error_frame", "make_event_frame"]
