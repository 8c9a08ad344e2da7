import importlib
import pkgutil

from lexidraft.logging import logger


def load_handlers() -> list[str]:
    """
    Import every handler module of this package so that their
    ``@message_router.register`` decorators run.

    Returns:
        Names of the imported modules.
    """
    loaded = []
    for _, module_name, _ in pkgutil.iter_modules(__path__):
        if module_name.startswith("_"):
            continue
        importlib.import_module(f"{__name__}.{module_name}")
        loaded.append(module_name)

    logger.debug(f"Loaded websocket handler modules: {loaded}")
    return loaded
