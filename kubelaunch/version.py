import platform
from typing import Dict

from kubelaunch import __version__


def version_info() -> Dict[str, str]:
    """Version details logged at startup and shown by `kubelaunch version`."""
    return {
        "Python Version": platform.python_version(),
        "OS/Arch": f"{platform.system().lower()}/{platform.machine().lower()}",
        "kubelaunch Version": __version__,
    }
