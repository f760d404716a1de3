# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Logging utilities for the delivery adapters.

Modules obtain named loggers through :func:`get_logger`. Handlers, level and
format are configured once by the entry point (see ``cli.main``) via
``logging.basicConfig()`` so that library code never installs handlers.

Example:
    Typical usage in a module::

        from delivery_adapters.logger import get_logger

        logger = get_logger("ResendAdapter")
        logger.warning("Invalid webhook signature")
"""

import logging

ROOT_LOGGER_NAME = "delivery_adapters"


def get_logger(name: str | None = None) -> logging.Logger:
    """Retrieve a logger under the package namespace.

    Args:
        name: Child logger name. ``None`` returns the package root logger.

    Returns:
        A ``logging.Logger`` instance bound to ``delivery_adapters.<name>``.
    """
    if not name:
        return logging.getLogger(ROOT_LOGGER_NAME)
    return logging.getLogger(f"{ROOT_LOGGER_NAME}.{name}")
