import socket


def get_free_port(host: str = "127.0.0.1") -> int:
    """Ask the OS for a currently unused TCP port.

    The port is released before returning, so another process may still
    claim it before the caller binds.
    """
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind((host, 0))
        return sock.getsockname()[1]
