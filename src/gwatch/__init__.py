"""gwatch: Live-reload supervisor that rebuilds and reruns on file changes."""

__version__ = "0.1.0"

# Public API
from gwatch.supervisor import Gwatch, supervise, watch_config_file

__all__ = [
    "__version__",
    "Gwatch",
    "supervise",
    "watch_config_file",
]
