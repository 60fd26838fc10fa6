from xt_harness.drivers.functionality import run_functionality
from xt_harness.drivers.host import run_host
from xt_harness.drivers.style import run_style

DRIVERS = {
    "style": run_style,
    "functionality": run_functionality,
    "host": run_host,
}

__all__ = ["DRIVERS", "run_functionality", "run_host", "run_style"]
