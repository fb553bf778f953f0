import importlib
import logging
from pathlib import Path

from authgate.types.module import CoreModule

authgate_error_logger = logging.getLogger("authgate.error")

all_modules: list[CoreModule] = []

for endpoints_file in sorted(Path(__file__).parent.glob("core/*/endpoints_*.py")):
    endpoint_module = importlib.import_module(
        f"authgate.core.{endpoints_file.parent.name}.{endpoints_file.stem}",
    )
    if hasattr(endpoint_module, "core_module"):
        core_module: CoreModule = endpoint_module.core_module
        all_modules.append(core_module)
    else:
        authgate_error_logger.error(
            f"Core module {endpoints_file} does not declare a core module. It won't be enabled.",
        )
