"""
Centralized logging factory for the DocIndex MCP project.

Library modules only obtain loggers here; handler configuration belongs to the
server entry point.
"""

import logging
from typing import Any


def get_logger(name: str, level: int | None = None) -> logging.Logger:
    """
    Create or get a logger with the specified name.

    Args:
        name: Logger name, typically __name__ from the calling module
        level: Optional logging level override

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(name)

    if level is not None:
        logger.setLevel(level)

    return logger


def get_class_logger(class_instance: Any) -> logging.Logger:
    """
    Create a logger for a class instance with a descriptive name.

    Args:
        class_instance: Instance of the class that needs a logger

    Returns:
        Logger with name format: module.ClassName
    """
    module_name = class_instance.__class__.__module__
    class_name = class_instance.__class__.__name__
    return get_logger(f"{module_name}.{class_name}")
