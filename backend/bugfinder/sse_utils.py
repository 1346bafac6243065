import json


def sse_event(event_type: str, data: dict) -> str:
    """Format a named Server-Sent Event string."""
    return f"event: {event_type}\ndata: {json.dumps(data, default=str)}\n\n"
