"""Path resolution for spawned server commands."""

import os
import re

_FLAG_WITH_VALUE = re.compile(r"^(--.+?)=(.+)$")
_URL_SCHEME = re.compile(r"^[a-zA-Z][a-zA-Z0-9+.-]*://")


def resolve_path(file_path: str, cwd: str) -> str:
    """Resolve ``file_path`` against ``cwd``, expanding a leading ``~``.

    Absolute paths are returned unchanged.
    """
    if file_path == "~" or file_path.startswith("~/"):
        file_path = os.path.expanduser(file_path)

    if os.path.isabs(file_path):
        return file_path

    return os.path.abspath(os.path.join(cwd, file_path))


def resolve_args_paths(args: list[str], cwd: str) -> list[str]:
    """Resolve arguments that look like filesystem paths.

    ``--flag=value`` pairs are resolved only when ``value`` contains ``/`` and
    is not a URL. Other flags, URLs, scoped package names (``@scope/pkg``) and
    bare words without a separator are left untouched.

    Example:
        >>> resolve_args_paths(["./bin/server.js", "--port=3000"], "/home/user")
        ['/home/user/bin/server.js', '--port=3000']
    """
    resolved = []
    for arg in args:
        flag_match = _FLAG_WITH_VALUE.match(arg)
        if flag_match:
            flag, value = flag_match.groups()
            if "/" in value and not _URL_SCHEME.match(value):
                arg = f"{flag}={resolve_path(value, cwd)}"
        elif arg.startswith("-") or _URL_SCHEME.match(arg):
            pass
        elif arg.startswith("@") or ("/" not in arg and "\\" not in arg):
            pass
        else:
            arg = resolve_path(arg, cwd)
        resolved.append(arg)
    return resolved
