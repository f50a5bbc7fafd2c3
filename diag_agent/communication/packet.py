"""
Wire codec for collector packets.

A frame is JSON text holding the numeric command code and the body::

    {"type": 100, "body": null}
    {"type": 101, "body": {"pid": 42, "cpu": 1.5, ...}}

Request and report codes come in pairs: the collector sends the even
(request) code and the agent answers with the next odd (report) code.
"""
import json
from dataclasses import dataclass
from enum import IntEnum
from typing import Any, Union

from diag_agent.core.errors import MalformedFrameError


class CommandCode(IntEnum):
    """The closed set of command codes understood on the wire."""
    EXEC_SERVER_STAT = 100
    REPORT_SERVER_STAT = 101
    EXEC_CPU_PROFILER = 200
    REPORT_CPU_PROFILER = 201
    EXEC_HEAP_SNAPSHOT = 300
    REPORT_HEAP_SNAPSHOT = 301

    @property
    def is_request(self) -> bool:
        return self.value % 2 == 0

    @classmethod
    def report_for(cls, request: int) -> 'CommandCode':
        """
        Return the report code paired with ``request``.

        :raises ValueError: If ``request`` is not a known request code
        """
        code = cls(request)
        if not code.is_request:
            raise ValueError(f"{code.name} is a report code, not a request code.")
        return cls(code.value + 1)


@dataclass(frozen=True)
class Packet:
    """One decoded frame."""
    type: int
    body: Any = None


def encode(packet_type: int, body: Any = None) -> str:
    """
    Encode a command code and body into a frame.

    :param packet_type: A code from :class:`CommandCode`
    :type packet_type: int
    :param body: JSON-serializable body
    :type body: Any
    :return: The frame text
    :rtype: str
    :raises ValueError: If the code is not part of the protocol
    :raises MalformedFrameError: If the body cannot be serialized
    """
    code = CommandCode(packet_type)
    try:
        return json.dumps({"type": int(code), "body": body}, separators=(',', ':'), allow_nan=False)
    except (TypeError, ValueError) as e:
        raise MalformedFrameError(f"Body of packet {code.name} is not JSON serializable: {e}") from e


def decode(frame: Union[str, bytes, bytearray]) -> Packet:
    """
    Decode a frame into a :class:`Packet`.

    Codes outside :class:`CommandCode` are decoded as plain integers so that
    the dispatcher can ignore them.

    :raises MalformedFrameError: If the frame is not a JSON object with an integer ``type``
    """
    if isinstance(frame, (bytes, bytearray)):
        try:
            frame = bytes(frame).decode('utf-8')
        except UnicodeDecodeError as e:
            raise MalformedFrameError(f"Frame is not valid UTF-8: {e}") from e
    if not isinstance(frame, str):
        raise MalformedFrameError(f"Frame must be text or bytes, got {type(frame).__name__}.")

    try:
        data = json.loads(frame)
    except ValueError as e:
        raise MalformedFrameError(f"Frame is not valid JSON: {e}") from e

    if not isinstance(data, dict):
        raise MalformedFrameError(f"Frame must be a JSON object, got {type(data).__name__}.")
    if 'type' not in data:
        raise MalformedFrameError("Frame is missing the 'type' field.")

    packet_type = data['type']
    # bool is an int subclass but never a command code
    if isinstance(packet_type, bool) or not isinstance(packet_type, int):
        raise MalformedFrameError(f"Frame 'type' must be an integer, got {packet_type!r}.")

    return Packet(type=packet_type, body=data.get('body'))
