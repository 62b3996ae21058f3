# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/shipyard/observers/logger.py

from __future__ import annotations

import logging

from .events import BaseEvent, ProvisionFailed


class LoggerObserver:
    """Writes lifecycle events to the run log."""

    def __init__(self, logger: logging.Logger):
        self.logger = logger

    def notify(self, event: BaseEvent) -> None:
        fields = {k: v for k, v in event.dict().items() if k not in ("ts", "run_id")}
        level = logging.ERROR if isinstance(event, ProvisionFailed) else logging.DEBUG
        self.logger.log(level, "[event] %s %s", type(event).__name__, fields)
