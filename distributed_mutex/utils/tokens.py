# distributed_mutex/utils/tokens.py

import os
import socket
import threading
import uuid

_HOST = socket.gethostname()


def new_owner_token() -> str:
    """host:pid:thread:random. Fresh for every acquisition attempt."""
    return f"{_HOST}:{os.getpid()}:{threading.get_ident()}:{uuid.uuid4().hex}"
