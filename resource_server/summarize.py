from typing import Any, Dict, Mapping

SUMMARY_CHARS = 200


def summarize(payload: Mapping[str, Any]) -> Dict[str, Any]:
    """Deterministic stand-in summariser: the first 200 characters."""
    text = str(payload.get("text") or "")
    summary = text[:SUMMARY_CHARS] + "..." if len(text) > SUMMARY_CHARS else text
    return {"summary": summary, "length": len(text)}
