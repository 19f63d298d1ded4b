"""Newline-delimited JSON-RPC framing for stdio transports."""

from mcp.types import JSONRPCMessage


class ReadBuffer:
    """Accumulates stdout bytes and yields complete JSON-RPC messages.

    A line that fails to parse is consumed before the error is raised, so one
    bad line never blocks the messages behind it.
    """

    def __init__(self) -> None:
        self._buffer = bytearray()

    def append(self, chunk: bytes) -> None:
        self._buffer.extend(chunk)

    def read_message(self) -> JSONRPCMessage | None:
        """Pop the next complete message, or None if no full line is buffered.

        Raises:
            UnicodeDecodeError: If the next line is not valid UTF-8
            pydantic.ValidationError: If the next line is not a JSON-RPC message
        """
        while True:
            index = self._buffer.find(b"\n")
            if index == -1:
                return None

            raw = bytes(self._buffer[:index])
            del self._buffer[: index + 1]
            line = raw.decode("utf-8").rstrip("\r")

            if not line.strip():
                continue  # Ignore empty lines
            return JSONRPCMessage.model_validate_json(line)

    def clear(self) -> None:
        self._buffer.clear()

    def __len__(self) -> int:
        return len(self._buffer)


def serialize_message(message: JSONRPCMessage) -> bytes:
    """Serialize ``message`` as one newline-terminated line."""
    line = message.model_dump_json(by_alias=True, exclude_none=True)
    return (line + "\n").encode("utf-8")
