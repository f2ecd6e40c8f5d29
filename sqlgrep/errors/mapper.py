from sqlgrep.errors.codes import ErrorCode

ERROR_MAP = {
    ErrorCode.CONFIGURATION_ERROR: (500, False),
    ErrorCode.EMPTY_REQUEST: (400, False),
    ErrorCode.LLM_UPSTREAM_ERROR: (502, True),
    ErrorCode.LLM_BAD_OUTPUT: (502, False),
    ErrorCode.PLAN_MISSING_QUERY: (422, False),
    ErrorCode.PLAN_UNSAFE_QUERY: (422, False),
    ErrorCode.PLAN_UNKNOWN_TABLE: (422, False),
    ErrorCode.PLAN_INVALID_BINDINGS: (422, False),
    ErrorCode.PLAN_EMPTY: (422, False),
    ErrorCode.DB_EXECUTION_ERROR: (500, False),
    ErrorCode.DB_LOCKED: (503, True),
    ErrorCode.DB_TIMEOUT: (503, True),
    ErrorCode.PIPELINE_CRASH: (500, False),
}


def map_error(code: ErrorCode | None) -> tuple[int, bool]:
    if code is None:
        return (500, False)
    return ERROR_MAP.get(code, (500, False))
