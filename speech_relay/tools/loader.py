"""
Tool discovery.

A tool module defines ``NAME``, ``DESCRIPTION``, ``PARAMETERS`` and a
``handler(caller_id, parameters)`` callable. Built-in tools live in the
``speech_relay.tools.avr`` package; deployments can add their own modules in
a directory pointed to by ``TOOLS_DIR``. Loading happens once at startup and
produces an immutable ``ToolRegistry``.
"""

import importlib
import importlib.util
import logging
import pkgutil
from pathlib import Path
from types import ModuleType
from typing import Iterable, List, Optional

from speech_relay.config.constants import LOGGER_NAME
from speech_relay.tools.registry import ToolRegistration, ToolRegistry

logger = logging.getLogger(LOGGER_NAME)

BUILTIN_TOOLS_PACKAGE = "speech_relay.tools.avr"
REQUIRED_ATTRIBUTES = ("NAME", "handler")


def registration_from_module(module: ModuleType, durable: bool = False) -> Optional[ToolRegistration]:
    """
    Build a registration from a tool module.

    Args:
        module: Imported tool module
        durable: Whether the tool is registered with the management API

    Returns:
        The registration, or None if the module is not a valid tool
    """
    missing = [attr for attr in REQUIRED_ATTRIBUTES if not hasattr(module, attr)]
    if missing:
        logger.warning(f"Skipping tool module {module.__name__}: missing {', '.join(missing)}")
        return None
    if not callable(module.handler):
        logger.warning(f"Skipping tool module {module.__name__}: handler is not callable")
        return None

    return ToolRegistration(
        name=module.NAME,
        handler=module.handler,
        parameters=list(getattr(module, "PARAMETERS", [])),
        description=getattr(module, "DESCRIPTION", ""),
        durable=durable,
    )


def load_package_tools(package_name: str = BUILTIN_TOOLS_PACKAGE, durable: bool = True) -> List[ToolRegistration]:
    """Load every tool module inside an importable package."""
    package = importlib.import_module(package_name)
    registrations = []
    for module_info in pkgutil.iter_modules(package.__path__):
        if module_info.name.startswith("_"):
            continue
        module = importlib.import_module(f"{package_name}.{module_info.name}")
        registration = registration_from_module(module, durable=durable)
        if registration:
            registrations.append(registration)
    return registrations


def load_directory_tools(directory: Path, durable: bool = False) -> List[ToolRegistration]:
    """
    Load every ``*.py`` tool module in a directory.

    Args:
        directory: Directory containing tool modules
        durable: Whether the tools are registered with the management API

    Returns:
        Registrations in file-name order

    Raises:
        FileNotFoundError: If the directory does not exist
    """
    directory = Path(directory)
    if not directory.is_dir():
        raise FileNotFoundError(f"Tools directory not found: {directory}")

    registrations = []
    for path in sorted(directory.glob("*.py")):
        if path.name.startswith("_"):
            continue
        spec = importlib.util.spec_from_file_location(f"speech_relay_tools_{path.stem}", path)
        module = importlib.util.module_from_spec(spec)
        spec.loader.exec_module(module)
        registration = registration_from_module(module, durable=durable)
        if registration:
            registrations.append(registration)
    return registrations


def merge_registrations(*groups: Iterable[ToolRegistration]) -> ToolRegistry:
    """
    Combine registration groups; earlier groups win on name collisions.
    """
    seen = {}
    for group in groups:
        for registration in group:
            if registration.name in seen:
                logger.warning(f"Tool {registration.name} already registered, keeping the first definition")
                continue
            seen[registration.name] = registration
    return ToolRegistry(seen.values())


def load_tools(tools_dir: Optional[Path] = None, debug: bool = False) -> ToolRegistry:
    """
    Build the startup registry from built-in tools and an optional directory.

    Built-in tools take precedence over directory tools with the same name.
    """
    builtin = load_package_tools()
    extra = load_directory_tools(tools_dir) if tools_dir else []
    registry = merge_registrations(builtin, extra)

    if debug:
        logger.debug(f"{len(registry)} tools loaded: {registry.list_tools()}")
    logger.info(
        f"Loaded {len(registry.durable_tools())} durable and "
        f"{len(registry.temporary_tools())} temporary tools"
    )
    return registry
