"""Centralized logging configuration for planning-orchestrator."""

import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

ROOT_LOGGER = "planning_orchestrator"
# Phase advances and revisions are also written to their own file
TRANSITIONS_LOGGER = f"{ROOT_LOGGER}.orchestrator.phases"

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s:%(lineno)d - %(message)s"
CONSOLE_FORMAT = "%(asctime)s [%(levelname)s] %(message)s"


def _rotating(path: Path, level: int, max_mb: int, backups: int) -> RotatingFileHandler:
	handler = RotatingFileHandler(path, maxBytes=max_mb * 1024 * 1024, backupCount=backups)
	handler.setLevel(level)
	handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
	return handler


def setup_logging(
	level: Optional[str] = None,
	log_dir: Optional[Path] = None,
	console: bool = True,
) -> logging.Logger:
	"""
	Configure the package logger.

	Args:
		level: Log level (DEBUG, INFO, WARNING, ERROR). Defaults to env var or INFO.
		log_dir: Directory for planning_orchestrator.log and transitions.log.
			No file handlers when omitted.
		console: Whether to attach a stderr console handler

	Returns:
		The package root logger
	"""
	level = level or os.getenv("LOG_LEVEL", "INFO")
	log_level = getattr(logging, level.upper(), logging.INFO)

	logger = logging.getLogger(ROOT_LOGGER)
	logger.setLevel(log_level)

	# Avoid duplicate handlers
	if logger.handlers:
		return logger

	if console:
		# stderr keeps stdout free for the MCP stdio transport
		console_handler = logging.StreamHandler(sys.stderr)
		console_handler.setLevel(log_level)
		console_handler.setFormatter(logging.Formatter(CONSOLE_FORMAT, datefmt="%H:%M:%S"))
		logger.addHandler(console_handler)

	if log_dir is not None:
		log_path = Path(log_dir)
		log_path.mkdir(parents=True, exist_ok=True)
		logger.addHandler(_rotating(log_path / f"{ROOT_LOGGER}.log", logging.DEBUG, 10, 5))
		logging.getLogger(TRANSITIONS_LOGGER).addHandler(
			_rotating(log_path / "transitions.log", logging.INFO, 5, 10)
		)

	if not logger.handlers:
		logger.addHandler(logging.NullHandler())
	return logger
