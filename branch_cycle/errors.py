#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
branch-cycle Exception Hierarchy

Custom exceptions for the cycle orchestration workflow. Every exception
carries the process exit code the CLI reports to the CI/CD pipeline.

Exception Hierarchy:
    BranchCycleError (base)
    ├── InvalidDateError (unparsable custom date)
    ├── MissingBranchError (a branch the flow reads does not exist)
    ├── GitOperationFailed (critical git command failed)
    ├── ConfigError (invalid or unreadable configuration)
    ├── StatusFileError (unreadable or malformed status file)
    └── RunCancelled (cancellation honored at a step boundary)

Usage:
    >>> try:
    ...     orchestrator.run(today)
    ... except MissingBranchError as e:
    ...     print(f"Missing: {', '.join(e.branches)}")
"""

from enum import IntEnum


class ExitCode(IntEnum):
    """Process exit codes understood by the CI/CD pipeline."""
    SUCCESS = 0
    INVALID_COMMAND = 1
    FILE_NOT_FOUND = 2
    GIT_OPERATION_FAILED = 3
    NOT_EXECUTION_DAY = 4
    MISSING_BRANCHES = 5
    CONFIG_ERROR = 6
    INVALID_DATE = 7
    CANCELLED = 8


class BranchCycleError(Exception):
    """
    Base exception for all branch-cycle operations.

    Attributes:
        message (str): Human-readable error message
        context (dict): Additional context information
        exit_code (ExitCode): Process exit code for the CLI
    """

    default_exit_code = ExitCode.GIT_OPERATION_FAILED

    def __init__(self, message: str, context: dict = None, exit_code: ExitCode = None):
        super().__init__(message)
        self.message = message
        self.context = context or {}
        self.exit_code = exit_code if exit_code is not None else self.default_exit_code

    def __str__(self) -> str:
        """String representation with context if available."""
        if self.context:
            context_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            return f"{self.message} (context: {context_str})"
        return self.message


class InvalidDateError(BranchCycleError):
    """Raised when a date string does not parse under the configured format."""
    default_exit_code = ExitCode.INVALID_DATE


class MissingBranchError(BranchCycleError):
    """
    Raised when branches the flow is about to read or write do not exist.

    Attributes:
        branches (list): Every missing branch name, in check order
    """
    default_exit_code = ExitCode.MISSING_BRANCHES

    def __init__(self, branches, context: dict = None):
        self.branches = list(branches)
        super().__init__(
            f"Required branch(es) missing: {', '.join(self.branches)}", context)


class GitOperationFailed(BranchCycleError):
    """
    Raised when a critical git operation fails.

    Attributes:
        operation (str): Description of the failed operation
    """
    default_exit_code = ExitCode.GIT_OPERATION_FAILED

    def __init__(self, operation: str, reason: str = '', context: dict = None):
        self.operation = operation
        self.reason = reason
        message = f"{operation} failed"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message, context)


class ConfigError(BranchCycleError):
    """Raised when the configuration cannot be read or is invalid."""
    default_exit_code = ExitCode.CONFIG_ERROR


class StatusFileError(BranchCycleError):
    """Raised when the status file cannot be read, parsed or written."""
    default_exit_code = ExitCode.FILE_NOT_FOUND


class RunCancelled(BranchCycleError):
    """Raised at a step boundary when cancellation was requested."""
    default_exit_code = ExitCode.CANCELLED
