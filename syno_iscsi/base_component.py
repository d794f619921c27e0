#!/usr/bin/env python3
"""
Base Component Class for Discovery-Processing-Housekeeping Pattern

Every command runs through the same lifecycle: discovery (prepare the
session with the appliance), processing (the actual work) and housekeeping
(tear the session down). Housekeeping always runs once discovery has
completed, even when processing fails.
"""

import logging
import datetime
import traceback
import uuid
from typing import Dict, Any, Optional, TypedDict, TypeVar, Callable


class ComponentConfig(TypedDict, total=False):
    """TypedDict for component configuration."""
    component_id: str
    log_level: str


class TimestampData(TypedDict):
    """TypedDict for tracking execution timestamps."""
    start: Optional[str]
    discover_start: Optional[str]
    discover_end: Optional[str]
    process_start: Optional[str]
    process_end: Optional[str]
    housekeep_start: Optional[str]
    housekeep_end: Optional[str]
    end: Optional[str]


class StatusData(TypedDict):
    """TypedDict for component execution status."""
    success: bool
    error: Optional[str]
    message: Optional[str]


class ExecutionSummary(TypedDict):
    """TypedDict for execution summary."""
    component_id: str
    component_name: str
    status: StatusData
    timestamps: TimestampData
    phases_executed: Dict[str, bool]


T = TypeVar('T')


class BaseComponent:
    """
    Base class for all components in the system.

    Implements the discovery-processing-housekeeping pattern and provides
    common functionality for component lifecycle management.
    """

    def __init__(self, config: ComponentConfig, logger: Optional[logging.Logger] = None) -> None:
        """
        Initialize a new component instance.

        Args:
            config: Configuration dictionary for the component
            logger: Optional logger instance (if not provided, a child of the
                package logger is used)
        """
        self.config = config
        self.component_id: str = config.get('component_id', str(uuid.uuid4()))
        self.component_name: str = self.__class__.__name__

        self.logger: logging.Logger = logger or self._setup_logger()

        self.discovery_results: Dict[str, Any] = {}
        self.housekeeping_results: Dict[str, Any] = {}

        self.phases_executed: Dict[str, bool] = {
            'discover': False,
            'process': False,
            'housekeep': False
        }

        self.timestamps: TimestampData = {
            'start': None,
            'discover_start': None,
            'discover_end': None,
            'process_start': None,
            'process_end': None,
            'housekeep_start': None,
            'housekeep_end': None,
            'end': None
        }

        self.status: StatusData = {
            'success': False,
            'error': None,
            'message': None
        }

        self.logger.debug(f"Initialized {self.component_name} (ID: {self.component_id})")

    def _setup_logger(self) -> logging.Logger:
        """
        Set up a logger for this component.

        Handlers are configured once by the command line entry point, so the
        component only picks its place in the logger hierarchy.

        Returns:
            A logger instance
        """
        logger = logging.getLogger(f"syno_iscsi.{self.component_name}")
        if (level := self.config.get('log_level')):
            logger.setLevel(level)
        return logger

    def discover(self) -> Dict[str, Any]:
        """
        Discovery phase: Examine the current environment without making changes.

        Overridden by derived classes.

        Returns:
            Dictionary of discovery results
        """
        self.timestamps['discover_start'] = datetime.datetime.now().isoformat()
        self.logger.warning(f"Default discovery implementation called for {self.component_name}")
        self.phases_executed['discover'] = True
        self.timestamps['discover_end'] = datetime.datetime.now().isoformat()
        return self.discovery_results

    def process(self, action: Callable[[], T]) -> T:
        """
        Processing phase: Perform the core work of the component.

        Args:
            action: Callable carrying out the requested operation

        Returns:
            Whatever the action returns
        """
        self.timestamps['process_start'] = datetime.datetime.now().isoformat()
        self.logger.debug(f"Starting processing phase for {self.component_name}")

        if not self.phases_executed['discover']:
            self.logger.warning("Processing without prior discovery may lead to unexpected results")

        try:
            result = action()

            self.phases_executed['process'] = True
            self.timestamps['process_end'] = datetime.datetime.now().isoformat()
            self.logger.debug(f"Processing phase completed for {self.component_name}")

            return result

        except Exception as e:
            self.logger.debug(f"Error during processing phase: {str(e)}")
            self.logger.debug(traceback.format_exc())
            self.status['success'] = False
            self.status['error'] = str(e)
            self.status['message'] = f"Processing phase failed: {str(e)}"

            # Update timestamp even on failure
            self.timestamps['process_end'] = datetime.datetime.now().isoformat()

            raise

    def housekeep(self) -> Dict[str, Any]:
        """
        Housekeeping phase: Clean up after the component's work.

        Overridden by derived classes.

        Returns:
            Dictionary of housekeeping results
        """
        self.timestamps['housekeep_start'] = datetime.datetime.now().isoformat()

        if not self.phases_executed['process']:
            self.logger.debug("Housekeeping without completed processing")

        self.logger.warning(f"Default housekeeping implementation called for {self.component_name}")
        self.phases_executed['housekeep'] = True
        self.timestamps['housekeep_end'] = datetime.datetime.now().isoformat()
        return self.housekeeping_results

    def execute(self, action: Callable[[], T]) -> T:
        """
        Execute the component lifecycle around a single action.

        Errors from any phase propagate to the caller after housekeeping has
        had its chance to run.

        Args:
            action: Callable carrying out the requested operation

        Returns:
            The result of the action
        """
        self.timestamps['start'] = datetime.datetime.now().isoformat()
        self.logger.debug(f"Executing {self.component_name}")

        try:
            self.discover()
            try:
                result = self.process(action)
            finally:
                self.housekeep()

            self.status['success'] = True
            self.status['message'] = "Execution completed successfully"
            return result

        finally:
            self.timestamps['end'] = datetime.datetime.now().isoformat()
            self.logger.debug(f"Execution of {self.component_name} completed with status: {self.status['success']}")

    def get_execution_summary(self) -> ExecutionSummary:
        """
        Get a summary of this component's execution.

        Returns:
            Dictionary with execution summary
        """
        return {
            "component_id": self.component_id,
            "component_name": self.component_name,
            "status": self.status,
            "timestamps": self.timestamps,
            "phases_executed": self.phases_executed
        }
