from enum import Enum


class ErrorCode(str, Enum):
    # --- Configuration / request ---
    CONFIGURATION_ERROR = "CONFIGURATION_ERROR"
    EMPTY_REQUEST = "EMPTY_REQUEST"

    # --- LLM ---
    LLM_UPSTREAM_ERROR = "LLM_UPSTREAM_ERROR"
    LLM_BAD_OUTPUT = "LLM_BAD_OUTPUT"

    # --- Plan validation ---
    PLAN_MISSING_QUERY = "PLAN_MISSING_QUERY"
    PLAN_UNSAFE_QUERY = "PLAN_UNSAFE_QUERY"
    PLAN_UNKNOWN_TABLE = "PLAN_UNKNOWN_TABLE"
    PLAN_INVALID_BINDINGS = "PLAN_INVALID_BINDINGS"
    PLAN_EMPTY = "PLAN_EMPTY"

    # --- Executor / DB ---
    DB_EXECUTION_ERROR = "DB_EXECUTION_ERROR"
    DB_LOCKED = "DB_LOCKED"
    DB_TIMEOUT = "DB_TIMEOUT"

    # --- Internal ---
    PIPELINE_CRASH = "PIPELINE_CRASH"
