import contextlib
from functools import wraps
from io import StringIO


def suppress_print(func):
    """Redirect anything the wrapped function prints to stdout into a discarded
    buffer. mogp-emulator reports fitting progress this way."""

    @wraps(func)
    def wrapper(*args, **kwargs):
        with contextlib.redirect_stdout(StringIO()):
            return func(*args, **kwargs)

    return wrapper
