"""
LED state models shared by the HTTP layer and the CLI.

Records are open-ended JSON objects: besides the configured channels
and the timestamp they may carry extra fields, which are preserved.
"""

from typing import Any, Dict, Iterable, List, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..store.state_log import OFF, ON


def normalize_onoff(value: Any) -> Optional[str]:
    """Return "ON"/"OFF" for a recognizable switch value, else None."""
    if value is None:
        return None
    value = str(value).strip().upper()
    return value if value in (ON, OFF) else None


def channel_update(payload: Mapping[str, Any], channels: Iterable[str]) -> Dict[str, str]:
    """Pick the configured channels out of a request payload.

    Values that do not normalize to ON/OFF are ignored, matching what the
    microcontroller-facing endpoint has always done.
    """
    update: Dict[str, str] = {}
    for channel in channels:
        normalized = normalize_onoff(payload.get(channel))
        if normalized is not None:
            update[channel] = normalized
    return update


class StateRecord(BaseModel):
    """One line of the state log: channel fields + timestamp."""

    model_config = ConfigDict(extra="allow")

    timestamp: Any


class StateReadResponse(StateRecord):
    """GET response: latest state fields plus newest-first history."""

    status: str = "success"
    history: List[Dict[str, Any]] = Field(default_factory=list)


class StateWriteResponse(StateRecord):
    """PUT/POST response: the merged record that was stored."""

    status: str = "success"


class ErrorResponse(BaseModel):
    status: str = "error"
    message: str
